"""
Tests for copying template graphs to a host.
"""
import pytest

from tmplink.audit.buffer import AuditAction, ResourceType
from tmplink.database.models import Graph, GraphItem
from tmplink.errors import IntegrityError
from tmplink.linkage.diff import DiffKind
from tmplink.linkage.graphs import GRAPH_YAXIS_TYPE_ITEM_VALUE, GraphDiffer, GraphDirty, GraphWriter


@pytest.fixture
def link_graphs(store, audit):
    def _link(hostid, templateids):
        result = GraphDiffer(store).diff(hostid, templateids)
        inserted = GraphWriter(store, audit).apply(hostid, result)
        return result, inserted

    return _link


class TestGraphLink:
    """Test graph diff and write."""

    def test_insert_binds_host_items(self, seed, link_graphs, fetch, audit):
        t1, h1 = seed.template("T1"), seed.host("H1")
        template_graph = seed.graph("CPU", [seed.item(t1, "cpu.user"), seed.item(t1, "cpu.system")], width=600)
        h_user, h_system = seed.item(h1, "cpu.user"), seed.item(h1, "cpu.system")

        result, inserted = link_graphs(h1, [t1])

        assert [d.kind for d in result.diffs] == [DiffKind.INSERT]
        (graph,) = fetch(Graph, Graph.templateid == template_graph)
        assert inserted == [graph["graphid"]]
        assert graph["name"] == "CPU"
        assert graph["width"] == 600
        gitems = fetch(GraphItem, GraphItem.graphid == graph["graphid"])
        assert sorted(g["itemid"] for g in gitems) == sorted([h_user, h_system])

        entry = audit.get(ResourceType.GRAPH, graph["graphid"])
        assert entry.action == AuditAction.ADD
        assert entry.details["graph.width"] == 600
        assert sum(key.endswith(".color") for key in entry.details) == 2

    def test_host_graph_with_same_items_is_taken_over(self, seed, link_graphs, fetch, audit):
        t1, h1 = seed.template("T1"), seed.host("H1")
        template_graph = seed.graph("CPU", [seed.item(t1, "cpu")], height=300)
        host_graph = seed.graph("CPU", [seed.item(h1, "cpu")], height=200)

        result, inserted = link_graphs(h1, [t1])

        assert inserted == []
        assert result.diffs[0].kind == DiffKind.UPDATE
        assert result.diffs[0].dirty == GraphDirty.TEMPLATEID | GraphDirty.HEIGHT
        row = fetch(Graph, Graph.graphid == host_graph)[0]
        assert row["templateid"] == template_graph
        assert row["height"] == 300
        assert audit.get(ResourceType.GRAPH, host_graph).details == {
            "graph.templateid": template_graph, "graph.height": 300,
        }

    def test_changed_graph_items_are_updated(self, seed, link_graphs, fetch, audit):
        t1, h1 = seed.template("T1"), seed.host("H1")
        template_graph = seed.graph("CPU", [seed.item(t1, "cpu")])
        host_graph = seed.graph("CPU", [seed.item(h1, "cpu")], templateid=template_graph)

        def fetch_gitem(graphid):
            return fetch(GraphItem, GraphItem.graphid == graphid)[0]

        template_gitem = fetch_gitem(template_graph)
        seed.session.execute(
            GraphItem.__table__.update()
            .where(GraphItem.gitemid == template_gitem["gitemid"])
            .values(color="FF0000")
        )

        result, _ = link_graphs(h1, [t1])

        assert result.diffs[0].dirty == GraphDirty.GITEMS
        host_gitem = fetch_gitem(host_graph)
        assert host_gitem["color"] == "FF0000"
        details = audit.get(ResourceType.GRAPH, host_graph).details
        assert details == {f"graph.gitems[{host_gitem['gitemid']}].color": "FF0000"}

    def test_mirrored_graph_follows_renamed_template(self, seed, link_graphs, fetch, audit):
        t1, h1 = seed.template("T1"), seed.host("H1")
        template_graph = seed.graph("CPU usage", [seed.item(t1, "cpu")])
        host_graph = seed.graph("CPU", [seed.item(h1, "cpu")], templateid=template_graph)

        result, _ = link_graphs(h1, [t1])

        assert result.diffs[0].dirty == GraphDirty.NAME
        assert fetch(Graph, Graph.graphid == host_graph)[0]["name"] == "CPU usage"
        assert audit.get(ResourceType.GRAPH, host_graph).details == {"graph.name": "CPU usage"}

    def test_added_template_graph_item_is_copied(self, seed, link_graphs, fetch, audit):
        t1, h1 = seed.template("T1"), seed.host("H1")
        template_graph = seed.graph("CPU", [seed.item(t1, "cpu"), seed.item(t1, "load")])
        h_cpu, h_load = seed.item(h1, "cpu"), seed.item(h1, "load")
        host_graph = seed.graph("CPU", [h_cpu], templateid=template_graph)

        result, _ = link_graphs(h1, [t1])

        assert result.diffs[0].dirty == GraphDirty.GITEMS
        gitems = fetch(GraphItem, GraphItem.graphid == host_graph)
        assert [(g["itemid"], g["sortorder"]) for g in gitems] == [(h_cpu, 0), (h_load, 1)]
        details = audit.get(ResourceType.GRAPH, host_graph).details
        assert details[f"graph.gitems[{gitems[1]['gitemid']}].itemid"] == h_load

    def test_removed_template_graph_item_is_deleted(self, seed, link_graphs, fetch, audit):
        t1, h1 = seed.template("T1"), seed.host("H1")
        template_graph = seed.graph("CPU", [seed.item(t1, "cpu")])
        h_cpu, h_load = seed.item(h1, "cpu"), seed.item(h1, "load")
        host_graph = seed.graph("CPU", [h_cpu, h_load], templateid=template_graph)
        (_, load_gitem) = fetch(GraphItem, GraphItem.graphid == host_graph)

        result, _ = link_graphs(h1, [t1])

        assert result.diffs[0].dirty == GraphDirty.GITEMS
        assert [g["itemid"] for g in fetch(GraphItem, GraphItem.graphid == host_graph)] == [h_cpu]
        details = audit.get(ResourceType.GRAPH, host_graph).details
        assert details == {f"graph.gitems[{load_gitem['gitemid']}]": "delete"}

    def test_replaced_template_graph_item_is_rebound(self, seed, link_graphs, fetch, audit):
        t1, h1 = seed.template("T1"), seed.host("H1")
        template_graph = seed.graph("Memory", [seed.item(t1, "mem")])
        h_mem, h_swap = seed.item(h1, "mem"), seed.item(h1, "swap")
        host_graph = seed.graph("Memory", [h_swap], templateid=template_graph)

        link_graphs(h1, [t1])

        (gitem,) = fetch(GraphItem, GraphItem.graphid == host_graph)
        assert gitem["itemid"] == h_mem
        details = audit.get(ResourceType.GRAPH, host_graph).details
        assert details == {f"graph.gitems[{gitem['gitemid']}].itemid": h_mem}

    def test_relink_is_skip(self, seed, link_graphs, audit):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.graph("CPU", [seed.item(t1, "cpu")])
        seed.item(h1, "cpu")
        link_graphs(h1, [t1])
        audit.init()

        result, inserted = link_graphs(h1, [t1])

        assert [d.kind for d in result.diffs] == [DiffKind.SKIP]
        assert inserted == []
        assert len(audit) == 0

    def test_axis_items_resolved_by_key(self, seed, link_graphs, fetch):
        t1, h1 = seed.template("T1"), seed.host("H1")
        t_cpu, t_max = seed.item(t1, "cpu"), seed.item(t1, "cpu.max")
        template_graph = seed.graph("CPU", [t_cpu], ymax_type=GRAPH_YAXIS_TYPE_ITEM_VALUE, ymax_itemid=t_max,
                                    ymin_type=0, ymin_itemid=t_max)
        seed.item(h1, "cpu")
        h_max = seed.item(h1, "cpu.max")

        link_graphs(h1, [t1])

        (graph,) = fetch(Graph, Graph.templateid == template_graph)
        assert graph["ymax_itemid"] == h_max
        assert graph["ymin_itemid"] is None

    def test_missing_host_item(self, seed, link_graphs):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.graph("CPU", [seed.item(t1, "cpu")])

        with pytest.raises(IntegrityError, match='Missing similar key "cpu" for graph "CPU"'):
            link_graphs(h1, [t1])
