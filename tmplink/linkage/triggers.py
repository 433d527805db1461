"""
Trigger family: copy template triggers to a host.

A template trigger and a host trigger are the same logical trigger when
their functions pair up on (function name, item key, parameter) and the
host expressions, with host function ids substituted by the paired
template function ids, equal the template expressions.
A host trigger already bound to a template trigger follows it column by
column and has its functions rebuilt when its condition drifts.
"""
import logging
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Dict, List, Sequence, Tuple

from sqlalchemy import or_, select

from tmplink.audit import entries as audit_entries
from tmplink.audit.buffer import AuditBuffer
from tmplink.database.models import Function, Item, Trigger, TriggerDepends, TriggerTag
from tmplink.database.store import BulkInsert, RelationalStore
from tmplink.errors import IntegrityError

from .diff import Diff, DiffKind, compare_columns, dirty_values
from .expression import Expression, ExpressionError

logger = logging.getLogger(__name__)

TRIGGER_VALUE_OK = 0
TRIGGER_STATE_NORMAL = 0

COPY_COLUMNS = (
    "description", "expression", "recovery_expression", "recovery_mode", "status", "type", "priority",
    "comments", "url", "flags", "correlation_mode", "correlation_tag", "manual_close", "opdata",
    "discover", "event_name",
)


class TriggerDirty(IntFlag):
    TEMPLATEID = 0x0001
    FLAGS = 0x0002
    RECOVERY_MODE = 0x0004
    CORRELATION_MODE = 0x0008
    CORRELATION_TAG = 0x0010
    MANUAL_CLOSE = 0x0020
    OPDATA = 0x0040
    DISCOVER = 0x0080
    EVENT_NAME = 0x0100
    TAGS = 0x0200
    DESCRIPTION = 0x0400
    STATUS = 0x0800
    TYPE = 0x1000
    PRIORITY = 0x2000
    COMMENTS = 0x4000
    URL = 0x8000
    EXPRESSION = 0x10000


UPDATE_COLUMNS = {
    TriggerDirty.FLAGS: "flags",
    TriggerDirty.RECOVERY_MODE: "recovery_mode",
    TriggerDirty.CORRELATION_MODE: "correlation_mode",
    TriggerDirty.CORRELATION_TAG: "correlation_tag",
    TriggerDirty.MANUAL_CLOSE: "manual_close",
    TriggerDirty.OPDATA: "opdata",
    TriggerDirty.DISCOVER: "discover",
    TriggerDirty.EVENT_NAME: "event_name",
}

# a host trigger already bound to its template follows every template column
MIRROR_COLUMNS = {
    **UPDATE_COLUMNS,
    TriggerDirty.DESCRIPTION: "description",
    TriggerDirty.STATUS: "status",
    TriggerDirty.TYPE: "type",
    TriggerDirty.PRIORITY: "priority",
    TriggerDirty.COMMENTS: "comments",
    TriggerDirty.URL: "url",
}


@dataclass
class TriggerFunction:
    functionid: int
    itemid: int
    key: str
    name: str
    parameter: str

    @property
    def signature(self) -> Tuple[str, str, str]:
        return self.name, self.key, self.parameter


@dataclass
class TriggerSnapshot:
    row: Dict[str, Any]
    functions: List[TriggerFunction] = field(default_factory=list)
    tags: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def triggerid(self) -> int:
        return self.row["triggerid"]

    @property
    def description(self) -> str:
        return self.row["description"]

    def expressions(self) -> Tuple[Expression, Expression]:
        try:
            return (Expression.parse(self.row["expression"]),
                    Expression.parse(self.row["recovery_expression"]))
        except ExpressionError as e:
            raise IntegrityError(f'cannot parse expression of trigger "{self.description}": {e}') from e


@dataclass
class TriggerDiffResult:
    diffs: List[Diff[TriggerSnapshot]]
    host_items: Dict[str, int]

    def of_kind(self, kind: DiffKind) -> List[Diff[TriggerSnapshot]]:
        return [d for d in self.diffs if d.kind == kind]


def equivalent(template: TriggerSnapshot, host: TriggerSnapshot) -> bool:
    """
    True when ``host`` computes the same condition as ``template``.

    Each template function is paired with an unused host function of the
    same (name, key, parameter); the host expressions are rewritten with
    the pairing and compared textually with the template expressions.
    """
    mapping: Dict[int, int] = {}
    used = set()
    for t_func in template.functions:
        partner = next(
            (h for h in host.functions if h.functionid not in used and h.signature == t_func.signature),
            None,
        )
        if partner is None:
            return False
        used.add(partner.functionid)
        mapping[partner.functionid] = t_func.functionid

    t_expr, t_recovery = template.expressions()
    h_expr, h_recovery = host.expressions()
    return h_expr.rewrite(mapping) == t_expr and h_recovery.rewrite(mapping) == t_recovery


class TriggerDiffer:
    def __init__(self, store: RelationalStore):
        self.store = store

    def _load(self, triggerids: Sequence[int]) -> List[TriggerSnapshot]:
        if not triggerids:
            return []
        table = Trigger.__table__
        snapshots = {
            row["triggerid"]: TriggerSnapshot(row=dict(row))
            for row in self.store.query(
                table.select().where(table.c.triggerid.in_(triggerids)).order_by(table.c.triggerid)
            ).mappings()
        }
        for row in self.store.query(
            select(Function.functionid, Function.triggerid, Function.itemid, Function.name,
                   Function.parameter, Item.key_)
            .join(Item, Item.itemid == Function.itemid)
            .where(Function.triggerid.in_(triggerids))
            .order_by(Function.functionid)
        ):
            snapshots[row.triggerid].functions.append(
                TriggerFunction(row.functionid, row.itemid, row.key_, row.name, row.parameter)
            )
        for row in self.store.query(
            select(TriggerTag.triggerid, TriggerTag.tag, TriggerTag.value)
            .where(TriggerTag.triggerid.in_(triggerids))
            .order_by(TriggerTag.triggertagid)
        ):
            snapshots[row.triggerid].tags.append((row.tag, row.value))
        return list(snapshots.values())

    def _trigger_ids_on(self, hostids: Sequence[int]) -> List[int]:
        return self.store.select_ids(
            select(Function.triggerid).distinct()
            .join(Item, Item.itemid == Function.itemid)
            .where(Item.hostid.in_(hostids))
        )

    def host_items(self, hostid: int) -> Dict[str, int]:
        return {
            row.key_: row.itemid
            for row in self.store.query(select(Item.itemid, Item.key_).where(Item.hostid == hostid))
        }

    def diff(self, hostid: int, templateids: Sequence[int]) -> TriggerDiffResult:
        templates = self._load(self._trigger_ids_on(templateids))
        template_ids = {t.triggerid for t in templates}
        descriptions = {t.description for t in templates}

        mirrored: Dict[int, TriggerSnapshot] = {}
        candidates: Dict[str, List[TriggerSnapshot]] = {}
        for trigger in self._load(self._trigger_ids_on([hostid])):
            templateid = trigger.row["templateid"]
            if templateid is not None:
                if templateid in template_ids:
                    mirrored[templateid] = trigger
            elif trigger.description in descriptions:
                candidates.setdefault(trigger.description, []).append(trigger)

        diffs: List[Diff[TriggerSnapshot]] = []
        for template in templates:
            host = mirrored.get(template.triggerid)
            if host is not None:
                dirty = self._dirty(template, host, MIRROR_COLUMNS)
                if not equivalent(template, host):
                    dirty |= TriggerDirty.EXPRESSION
                diffs.append(Diff.update(template, host.triggerid, dirty) if dirty
                             else Diff.skip(template, host.triggerid))
                continue

            pool = candidates.get(template.description, [])
            match = next((h for h in pool if equivalent(template, h)), None)
            if match is not None:
                pool.remove(match)
                diffs.append(Diff.update(template, match.triggerid,
                                         self._dirty(template, match, UPDATE_COLUMNS) | TriggerDirty.TEMPLATEID))
            else:
                diffs.append(Diff.insert(template))

        logger.debug(
            "Trigger diff for host %s: %d insert, %d update, %d skip", hostid,
            sum(d.kind == DiffKind.INSERT for d in diffs),
            sum(d.kind == DiffKind.UPDATE for d in diffs),
            sum(d.kind == DiffKind.SKIP for d in diffs),
        )
        return TriggerDiffResult(diffs=diffs, host_items=self.host_items(hostid))

    @staticmethod
    def _dirty(template: TriggerSnapshot, host: TriggerSnapshot, columns: Dict[TriggerDirty, str]) -> int:
        dirty = compare_columns(template.row, host.row, columns)
        if host.row["templateid"] != template.triggerid:
            dirty |= TriggerDirty.TEMPLATEID
        if template.tags != host.tags:
            dirty |= TriggerDirty.TAGS
        return dirty


@dataclass
class TriggerWriteResult:
    inserted: List[int] = field(default_factory=list)
    updated: List[int] = field(default_factory=list)
    # template trigger id -> host trigger id
    mapping: Dict[int, int] = field(default_factory=dict)


class TriggerWriter:
    def __init__(self, store: RelationalStore, audit: AuditBuffer):
        self.store = store
        self.audit = audit

    def apply(self, hostid: int, result: TriggerDiffResult) -> TriggerWriteResult:
        out = TriggerWriteResult()
        for d in result.diffs:
            if d.kind == DiffKind.SKIP:
                out.mapping[d.template.triggerid] = d.host_id

        self._insert(result.of_kind(DiffKind.INSERT), result.host_items, out)
        self._update(result.of_kind(DiffKind.UPDATE), result.host_items, out)
        self._add_dependencies(hostid, out.inserted + out.updated)
        self._copy_tags(result, out)
        return out

    def _resolve_items(self, template: TriggerSnapshot, host_items: Dict[str, int]) -> List[int]:
        itemids = []
        for func in template.functions:
            itemid = host_items.get(func.key)
            if itemid is None:
                logger.critical(
                    'Cannot copy trigger "%s": host has no item with key "%s"', template.description, func.key
                )
                raise IntegrityError(
                    f'Missing similar key "{func.key}" for trigger "{template.description}"'
                )
            itemids.append(itemid)
        return itemids

    def _insert(self, diffs: List[Diff[TriggerSnapshot]], host_items: Dict[str, int],
                out: TriggerWriteResult) -> None:
        if not diffs:
            return

        resolved = [self._resolve_items(d.template, host_items) for d in diffs]
        triggerid = self.store.get_maxid_num("triggers", len(diffs))
        num_functions = sum(len(d.template.functions) for d in diffs)
        functionid = self.store.get_maxid_num("functions", num_functions) if num_functions else 0

        triggers = self.store.bulk_insert(
            "triggers", "triggerid", *COPY_COLUMNS, "value", "state", "templateid",
        )
        functions = self.store.bulk_insert("functions", "functionid", "itemid", "triggerid", "name", "parameter")

        for d, itemids in zip(diffs, resolved):
            template = d.template
            expressions, functionid = self._add_functions(functions, template, itemids, triggerid, functionid)
            row = {column: template.row[column] for column in COPY_COLUMNS}
            row["expression"], row["recovery_expression"] = expressions
            row.update(value=TRIGGER_VALUE_OK, state=TRIGGER_STATE_NORMAL, templateid=template.triggerid)
            triggers.add_values(triggerid, *(row[c] for c in COPY_COLUMNS), row["value"], row["state"],
                                row["templateid"])

            audit_entries.trigger_add(self.audit, triggerid, row)
            out.inserted.append(triggerid)
            out.mapping[template.triggerid] = triggerid
            triggerid += 1

        triggers.execute()
        functions.execute()
        logger.debug("Inserted %d trigger(s)", len(diffs))

    @staticmethod
    def _add_functions(insert: BulkInsert, template: TriggerSnapshot, itemids: List[int], triggerid: int,
                       functionid: int) -> Tuple[Tuple[str, str], int]:
        """
        Queue copies of the template functions for ``triggerid``.

        Returns:
            The rewritten (expression, recovery expression) and the next free function id
        """
        mapping: Dict[int, int] = {}
        for func, itemid in zip(template.functions, itemids):
            mapping[func.functionid] = functionid
            insert.add_values(functionid, itemid, triggerid, func.name, func.parameter)
            functionid += 1
        expression, recovery = template.expressions()
        return (str(expression.rewrite(mapping)), str(recovery.rewrite(mapping))), functionid

    def _rebind_functions(self, diffs: List[Diff[TriggerSnapshot]],
                          host_items: Dict[str, int]) -> Dict[int, Tuple[str, str]]:
        """Replace the functions of host triggers whose condition drifted from the template."""
        if not diffs:
            return {}

        resolved = [self._resolve_items(d.template, host_items) for d in diffs]
        self.store.delete_ids("functions", "triggerid", [d.host_id for d in diffs])
        num_functions = sum(len(d.template.functions) for d in diffs)
        functionid = self.store.get_maxid_num("functions", num_functions) if num_functions else 0

        functions = self.store.bulk_insert("functions", "functionid", "itemid", "triggerid", "name", "parameter")
        expressions: Dict[int, Tuple[str, str]] = {}
        for d, itemids in zip(diffs, resolved):
            expressions[d.host_id], functionid = self._add_functions(
                functions, d.template, itemids, d.host_id, functionid
            )
        functions.execute()
        return expressions

    def _update(self, diffs: List[Diff[TriggerSnapshot]], host_items: Dict[str, int],
                out: TriggerWriteResult) -> None:
        if not diffs:
            return

        expressions = self._rebind_functions([d for d in diffs if d.dirty & TriggerDirty.EXPRESSION], host_items)

        buf = self.store.new_buffer()
        self.store.begin_multiple_update(buf)
        for d in diffs:
            template = d.template
            values = dirty_values(d.dirty, MIRROR_COLUMNS, template.row)
            if d.host_id in expressions:
                values["expression"], values["recovery_expression"] = expressions[d.host_id]
            if d.dirty & TriggerDirty.TEMPLATEID:
                values["templateid"] = template.triggerid
            self.store.update_row(buf, "triggers", "triggerid", d.host_id, values)
            audit_entries.trigger_update(self.audit, d.host_id, template.description, template.row["flags"], values)
            out.updated.append(d.host_id)
            out.mapping[template.triggerid] = d.host_id
        self.store.end_multiple_update(buf)
        logger.debug("Updated %d trigger(s)", len(diffs))

    def _add_dependencies(self, hostid: int, triggerids: List[int]) -> None:
        """
        Re-point dependencies of template triggers to their host copies.

        Covers every template dependency where either end is the template of
        one of ``triggerids``. Pairs the host already carries are kept.
        """
        if not triggerids:
            return

        links = self.store.query(
            select(TriggerDepends.triggerid_down, TriggerDepends.triggerid_up).distinct()
            .join(Trigger, or_(Trigger.templateid == TriggerDepends.triggerid_down,
                               Trigger.templateid == TriggerDepends.triggerid_up))
            .where(Trigger.triggerid.in_(triggerids))
            .order_by(TriggerDepends.triggerid_down, TriggerDepends.triggerid_up)
        ).all()
        if not links:
            return

        templateids = {down for down, _ in links} | {up for _, up in links}
        host_copies = {
            row.templateid: row.triggerid
            for row in self.store.query(
                select(Trigger.triggerid, Trigger.templateid).distinct()
                .join(Function, Function.triggerid == Trigger.triggerid)
                .join(Item, Item.itemid == Function.itemid)
                .where(Item.hostid == hostid, Trigger.templateid.in_(sorted(templateids)))
            )
        }

        pairs = []
        for down, up in links:
            triggerid_down = host_copies.get(down)
            if triggerid_down is None:
                continue
            # an up-trigger outside the template set is referenced as is
            pairs.append((triggerid_down, host_copies.get(up, up)))

        existing = set()
        if pairs:
            existing = {
                (row.triggerid_down, row.triggerid_up)
                for row in self.store.query(
                    select(TriggerDepends.triggerid_down, TriggerDepends.triggerid_up)
                    .where(TriggerDepends.triggerid_down.in_(sorted({down for down, _ in pairs})))
                )
            }
        pairs = [pair for pair in dict.fromkeys(pairs) if pair not in existing]
        if not pairs:
            return

        downs = {
            row.triggerid: row
            for row in self.store.query(
                select(Trigger.triggerid, Trigger.description, Trigger.flags)
                .where(Trigger.triggerid.in_(sorted({down for down, _ in pairs})))
            )
        }
        depid = self.store.get_maxid_num("trigger_depends", len(pairs))
        insert = self.store.bulk_insert("trigger_depends", "triggerdepid", "triggerid_down", "triggerid_up")
        for triggerid_down, triggerid_up in pairs:
            insert.add_values(depid, triggerid_down, triggerid_up)
            down = downs[triggerid_down]
            audit_entries.trigger_update(self.audit, triggerid_down, down.description, down.flags, {})
            audit_entries.trigger_dependency(self.audit, triggerid_down, down.flags, depid, triggerid_up)
            depid += 1
        insert.execute()

    def _copy_tags(self, result: TriggerDiffResult, out: TriggerWriteResult) -> None:
        replace = [d for d in result.of_kind(DiffKind.UPDATE) if d.dirty & TriggerDirty.TAGS]
        inserted = {d.template.triggerid for d in result.of_kind(DiffKind.INSERT)}
        targets = [(d.template, out.mapping[d.template.triggerid])
                   for d in result.diffs if d.template.triggerid in inserted]
        targets += [(d.template, d.host_id) for d in replace]
        if not targets:
            return

        if replace:
            old_tags = self.store.query(
                select(TriggerTag.triggertagid, TriggerTag.triggerid)
                .where(TriggerTag.triggerid.in_([d.host_id for d in replace]))
            ).all()
            flags_by_host = {d.host_id: d.template.row["flags"] for d in replace}
            for tagid, triggerid in old_tags:
                audit_entries.trigger_tag_delete(self.audit, triggerid, flags_by_host[triggerid], tagid)
            self.store.delete_ids("trigger_tag", "triggerid", [d.host_id for d in replace])

        num_tags = sum(len(template.tags) for template, _ in targets)
        if not num_tags:
            return
        tagid = self.store.get_maxid_num("trigger_tag", num_tags)
        insert = self.store.bulk_insert("trigger_tag", "triggertagid", "triggerid", "tag", "value")
        for template, triggerid in targets:
            for tag, value in template.tags:
                insert.add_values(tagid, triggerid, tag, value)
                audit_entries.trigger_tag(self.audit, triggerid, template.row["flags"], tagid, tag, value)
                tagid += 1
        insert.execute()
