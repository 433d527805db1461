"""
Graph family: copy template graphs to a host.

A host graph with the same name, no template and the same sequence of
item keys is taken over by the template graph; otherwise the graph and
its graph items are inserted, bound to host items by key.
"""
import logging
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Dict, List, Sequence, Tuple

from sqlalchemy import select

from tmplink.audit import entries as audit_entries
from tmplink.audit.buffer import AuditBuffer
from tmplink.database.models import Graph, GraphItem, Item
from tmplink.database.store import RelationalStore
from tmplink.errors import IntegrityError

from .diff import Diff, DiffKind, SubDiff, compare_columns, dirty_values, positional_diff

logger = logging.getLogger(__name__)

# axis type whose limit is taken from an item value
GRAPH_YAXIS_TYPE_ITEM_VALUE = 2


class GraphDirty(IntFlag):
    TEMPLATEID = 0x00001
    WIDTH = 0x00002
    HEIGHT = 0x00004
    YAXISMIN = 0x00008
    YAXISMAX = 0x00010
    SHOW_WORK_PERIOD = 0x00020
    SHOW_TRIGGERS = 0x00040
    GRAPHTYPE = 0x00080
    SHOW_LEGEND = 0x00100
    SHOW_3D = 0x00200
    PERCENT_LEFT = 0x00400
    PERCENT_RIGHT = 0x00800
    YMIN_TYPE = 0x01000
    YMAX_TYPE = 0x02000
    YMIN_ITEMID = 0x04000
    YMAX_ITEMID = 0x08000
    FLAGS = 0x10000
    DISCOVER = 0x20000
    GITEMS = 0x40000
    NAME = 0x80000


UPDATE_COLUMNS = {
    GraphDirty.WIDTH: "width",
    GraphDirty.HEIGHT: "height",
    GraphDirty.YAXISMIN: "yaxismin",
    GraphDirty.YAXISMAX: "yaxismax",
    GraphDirty.SHOW_WORK_PERIOD: "show_work_period",
    GraphDirty.SHOW_TRIGGERS: "show_triggers",
    GraphDirty.GRAPHTYPE: "graphtype",
    GraphDirty.SHOW_LEGEND: "show_legend",
    GraphDirty.SHOW_3D: "show_3d",
    GraphDirty.PERCENT_LEFT: "percent_left",
    GraphDirty.PERCENT_RIGHT: "percent_right",
    GraphDirty.YMIN_TYPE: "ymin_type",
    GraphDirty.YMAX_TYPE: "ymax_type",
    GraphDirty.YMIN_ITEMID: "ymin_itemid",
    GraphDirty.YMAX_ITEMID: "ymax_itemid",
    GraphDirty.FLAGS: "flags",
    GraphDirty.DISCOVER: "discover",
    GraphDirty.NAME: "name",
}

COPY_COLUMNS = tuple(UPDATE_COLUMNS.values())

GITEM_COLUMNS = ("drawtype", "sortorder", "color", "yaxisside", "calc_fnc", "type")


@dataclass
class GraphItemRow:
    gitemid: int
    itemid: int
    key: str
    values: Dict[str, Any]


@dataclass
class GraphSnapshot:
    row: Dict[str, Any]
    gitems: List[GraphItemRow] = field(default_factory=list)
    # template graphs only: ymin/ymax columns resolved against the host
    resolved: Dict[str, Any] = field(default_factory=dict)

    @property
    def graphid(self) -> int:
        return self.row["graphid"]

    @property
    def name(self) -> str:
        return self.row["name"]

    def keys(self) -> Tuple[str, ...]:
        return tuple(g.key for g in self.gitems)

    def target(self) -> Dict[str, Any]:
        """Column values a host copy of this graph should carry."""
        values = {column: self.row[column] for column in COPY_COLUMNS}
        values.update(self.resolved)
        return values


@dataclass
class GraphDiffResult:
    diffs: List[Diff[GraphSnapshot]]
    host_graphs: Dict[int, GraphSnapshot]
    host_items: Dict[str, int]

    def of_kind(self, kind: DiffKind) -> List[Diff[GraphSnapshot]]:
        return [d for d in self.diffs if d.kind == kind]


def _gitem_changes(template: GraphItemRow, host: GraphItemRow) -> Dict[str, Any]:
    return {c: template.values[c] for c in GITEM_COLUMNS if template.values[c] != host.values[c]}


def gitem_diff(template: GraphSnapshot, host: GraphSnapshot) -> SubDiff[GraphItemRow, GraphItemRow]:
    """
    Pair graph items by position in key order.

    A pair whose key differs is rebound to the host item of the template
    key; surplus template items are added and surplus host items deleted.
    """
    return positional_diff(
        template.gitems, host.gitems,
        lambda t, h: t.key != h.key or bool(_gitem_changes(t, h)),
    )


def _host_itemid(template: GraphSnapshot, gitem: GraphItemRow, host_items: Dict[str, int]) -> int:
    itemid = host_items.get(gitem.key)
    if itemid is None:
        logger.critical('Cannot copy graph "%s": host has no item with key "%s"', template.name, gitem.key)
        raise IntegrityError(f'Missing similar key "{gitem.key}" for graph "{template.name}"')
    return itemid


class GraphDiffer:
    def __init__(self, store: RelationalStore):
        self.store = store

    def _graph_ids_on(self, hostids: Sequence[int]) -> List[int]:
        return self.store.select_ids(
            select(GraphItem.graphid).distinct()
            .join(Item, Item.itemid == GraphItem.itemid)
            .where(Item.hostid.in_(hostids))
        )

    def _load(self, graphids: Sequence[int]) -> List[GraphSnapshot]:
        if not graphids:
            return []
        table = Graph.__table__
        snapshots = {
            row["graphid"]: GraphSnapshot(row=dict(row))
            for row in self.store.query(
                table.select().where(table.c.graphid.in_(graphids)).order_by(table.c.graphid)
            ).mappings()
        }
        for row in self.store.query(
            select(GraphItem.__table__, Item.key_)
            .join(Item, Item.itemid == GraphItem.itemid)
            .where(GraphItem.graphid.in_(graphids))
            .order_by(Item.key_, GraphItem.gitemid)
        ).mappings():
            snapshots[row["graphid"]].gitems.append(
                GraphItemRow(row["gitemid"], row["itemid"], row["key_"], {c: row[c] for c in GITEM_COLUMNS})
            )
        return list(snapshots.values())

    def _resolve_axes(self, templates: List[GraphSnapshot], host_items: Dict[str, int]) -> None:
        axis_items = {
            t.row[column] for t in templates for column in ("ymin_itemid", "ymax_itemid") if t.row[column]
        }
        keys = {}
        if axis_items:
            keys = {
                row.itemid: row.key_
                for row in self.store.query(select(Item.itemid, Item.key_).where(Item.itemid.in_(axis_items)))
            }
        for template in templates:
            for axis in ("ymin", "ymax"):
                itemid = None
                if template.row[f"{axis}_type"] == GRAPH_YAXIS_TYPE_ITEM_VALUE:
                    key = keys.get(template.row[f"{axis}_itemid"])
                    itemid = host_items.get(key) if key is not None else None
                template.resolved[f"{axis}_itemid"] = itemid

    def diff(self, hostid: int, templateids: Sequence[int]) -> GraphDiffResult:
        host_items = {
            row.key_: row.itemid
            for row in self.store.query(select(Item.itemid, Item.key_).where(Item.hostid == hostid))
        }
        templates = self._load(self._graph_ids_on(templateids))
        self._resolve_axes(templates, host_items)
        template_ids = {t.graphid for t in templates}

        host_graphs = {g.graphid: g for g in self._load(self._graph_ids_on([hostid]))}
        mirrored: Dict[int, GraphSnapshot] = {}
        candidates: Dict[str, List[GraphSnapshot]] = {}
        for graph in host_graphs.values():
            templateid = graph.row["templateid"]
            if templateid is not None:
                if templateid in template_ids:
                    mirrored[templateid] = graph
            else:
                candidates.setdefault(graph.name, []).append(graph)

        diffs: List[Diff[GraphSnapshot]] = []
        for template in templates:
            host = mirrored.get(template.graphid)
            if host is None:
                pool = candidates.get(template.name, [])
                host = next((h for h in pool if h.keys() == template.keys()), None)
                if host is None:
                    diffs.append(Diff.insert(template))
                    continue
                pool.remove(host)

            dirty = self._dirty(template, host)
            diffs.append(Diff.update(template, host.graphid, dirty) if dirty else Diff.skip(template, host.graphid))

        logger.debug(
            "Graph diff for host %s: %d insert, %d update, %d skip", hostid,
            sum(d.kind == DiffKind.INSERT for d in diffs),
            sum(d.kind == DiffKind.UPDATE for d in diffs),
            sum(d.kind == DiffKind.SKIP for d in diffs),
        )
        return GraphDiffResult(diffs=diffs, host_graphs=host_graphs, host_items=host_items)

    @staticmethod
    def _dirty(template: GraphSnapshot, host: GraphSnapshot) -> int:
        dirty = compare_columns(template.target(), host.row, UPDATE_COLUMNS)
        if host.row["templateid"] != template.graphid:
            dirty |= GraphDirty.TEMPLATEID
        if gitem_diff(template, host):
            dirty |= GraphDirty.GITEMS
        return dirty


class GraphWriter:
    def __init__(self, store: RelationalStore, audit: AuditBuffer):
        self.store = store
        self.audit = audit

    def apply(self, hostid: int, result: GraphDiffResult) -> List[int]:
        """Write the diff; returns ids of inserted graphs."""
        inserted = self._insert(result.of_kind(DiffKind.INSERT), result.host_items)
        self._update(result.of_kind(DiffKind.UPDATE), result.host_graphs, result.host_items)
        return inserted

    def _insert(self, diffs: List[Diff[GraphSnapshot]], host_items: Dict[str, int]) -> List[int]:
        if not diffs:
            return []

        for d in diffs:
            for gitem in d.template.gitems:
                _host_itemid(d.template, gitem, host_items)

        graphid = self.store.get_maxid_num("graphs", len(diffs))
        num_gitems = sum(len(d.template.gitems) for d in diffs)
        gitemid = self.store.get_maxid_num("graphs_items", num_gitems) if num_gitems else 0

        graphs = self.store.bulk_insert("graphs", "graphid", *COPY_COLUMNS, "templateid")
        gitems = self.store.bulk_insert("graphs_items", "gitemid", "graphid", "itemid", *GITEM_COLUMNS)

        inserted = []
        for d in diffs:
            template = d.template
            row = template.target()
            row["templateid"] = template.graphid
            graphs.add_values(graphid, *(row[c] for c in COPY_COLUMNS), row["templateid"])
            audit_entries.graph_add(self.audit, graphid, row)

            for gitem in template.gitems:
                gitems.add_values(gitemid, graphid, host_items[gitem.key], *(gitem.values[c] for c in GITEM_COLUMNS))
                audit_entries.graph_item(self.audit, graphid, row["flags"], gitemid,
                                         {"itemid": host_items[gitem.key], **gitem.values})
                gitemid += 1

            inserted.append(graphid)
            graphid += 1

        graphs.execute()
        gitems.execute()
        logger.debug("Inserted %d graph(s)", len(inserted))
        return inserted

    def _update(self, diffs: List[Diff[GraphSnapshot]], host_graphs: Dict[int, GraphSnapshot],
                host_items: Dict[str, int]) -> None:
        if not diffs:
            return

        gitem_diffs = {
            d.host_id: gitem_diff(d.template, host_graphs[d.host_id])
            for d in diffs if d.dirty & GraphDirty.GITEMS
        }
        for d in diffs:
            if d.host_id in gitem_diffs:
                for gitem in d.template.gitems:
                    _host_itemid(d.template, gitem, host_items)

        buf = self.store.new_buffer()
        self.store.begin_multiple_update(buf)
        removed: List[int] = []
        added: List[Tuple[int, GraphSnapshot, GraphItemRow]] = []
        for d in diffs:
            template = d.template
            flags = template.row["flags"]
            values = dirty_values(d.dirty, UPDATE_COLUMNS, template.target())
            if d.dirty & GraphDirty.TEMPLATEID:
                values["templateid"] = template.graphid
            self.store.update_row(buf, "graphs", "graphid", d.host_id, values)
            audit_entries.graph_update(self.audit, d.host_id, template.name, flags, values)

            gitems = gitem_diffs.get(d.host_id)
            if gitems is None:
                continue
            for t_gitem, h_gitem in gitems.to_update:
                changes = _gitem_changes(t_gitem, h_gitem)
                if t_gitem.key != h_gitem.key:
                    changes["itemid"] = host_items[t_gitem.key]
                self.store.update_row(buf, "graphs_items", "gitemid", h_gitem.gitemid, changes)
                audit_entries.graph_item(self.audit, d.host_id, flags, h_gitem.gitemid, changes)
            for h_gitem in gitems.to_delete:
                audit_entries.graph_item_delete(self.audit, d.host_id, flags, h_gitem.gitemid)
                removed.append(h_gitem.gitemid)
            added.extend((d.host_id, template, gitem) for gitem in gitems.to_add)
        self.store.end_multiple_update(buf)

        self.store.delete_ids("graphs_items", "gitemid", removed)
        if added:
            gitemid = self.store.get_maxid_num("graphs_items", len(added))
            insert = self.store.bulk_insert("graphs_items", "gitemid", "graphid", "itemid", *GITEM_COLUMNS)
            for graphid, template, gitem in added:
                itemid = host_items[gitem.key]
                insert.add_values(gitemid, graphid, itemid, *(gitem.values[c] for c in GITEM_COLUMNS))
                audit_entries.graph_item(self.audit, graphid, template.row["flags"], gitemid,
                                         {"itemid": itemid, **gitem.values})
                gitemid += 1
            insert.execute()
        logger.debug("Updated %d graph(s)", len(diffs))
