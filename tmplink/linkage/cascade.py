"""
Cascading deletes for template unlink and host deletion.

Unlink walks the entities a template owns on a host in a fixed order:
web scenarios, graphs, triggers, host prototypes, items and finally the
``hosts_templates`` rows. Every delete audit entry is recorded before the
corresponding DML is issued. Child rows without an audit resource
(functions, tags, steps, interfaces) go with their parent through
``ON DELETE CASCADE``.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

from sqlalchemy import and_, select, update
from sqlalchemy.orm import aliased

from tmplink.audit import entries as audit_entries
from tmplink.audit.buffer import AuditBuffer, ResourceType
from tmplink.database.models import (
    Action,
    Condition,
    Flags,
    Function,
    Graph,
    GraphDiscovery,
    GraphItem,
    GroupDiscovery,
    GroupPrototype,
    Host,
    HostDiscovery,
    HostGroup,
    HostTemplate,
    HttpStep,
    HttpStepItem,
    HttpTest,
    HttpTestItem,
    Item,
    ItemDiscovery,
    SysmapElement,
    Trigger,
    TriggerDiscovery,
)
from tmplink.database.store import RelationalStore

logger = logging.getLogger(__name__)

ACTION_STATUS_DISABLED = 1

CONDITION_TYPE_HOST = 1
CONDITION_TYPE_TRIGGER = 2

SYSMAP_ELEMENT_TYPE_TRIGGER = 2
SYSMAP_ELEMENT_TYPE_HOST = 4

HISTORY_TABLES = (
    "history", "history_str", "history_uint", "history_log", "history_text", "trends", "trends_uint",
)
EVENT_TABLES = ("events",)


@dataclass
class CascadeStats:
    httptests: int = 0
    graphs: int = 0
    triggers: int = 0
    host_prototypes: int = 0
    items: int = 0
    hosts: int = 0
    links: int = 0


class Cascade:
    def __init__(self, store: RelationalStore, audit: AuditBuffer):
        self.store = store
        self.audit = audit
        self.stats = CascadeStats()

    # selection of template-owned entities on a host

    def _owned_httptests(self, hostid: int, templateids: Sequence[int]) -> List[int]:
        t = aliased(HttpTest)
        return self.store.select_ids(
            select(HttpTest.httptestid)
            .join(t, t.httptestid == HttpTest.templateid)
            .where(HttpTest.hostid == hostid, t.hostid.in_(templateids))
        )

    def _owned_graphs(self, hostid: int, templateids: Sequence[int]) -> List[int]:
        template_graphs = (
            select(GraphItem.graphid)
            .join(Item, Item.itemid == GraphItem.itemid)
            .where(Item.hostid.in_(templateids))
        )
        return self.store.select_ids(
            select(Graph.graphid)
            .join(GraphItem, GraphItem.graphid == Graph.graphid)
            .join(Item, Item.itemid == GraphItem.itemid)
            .where(Item.hostid == hostid, Graph.templateid.in_(template_graphs))
        )

    def _owned_triggers(self, hostid: int, templateids: Sequence[int]) -> List[int]:
        template_triggers = (
            select(Function.triggerid)
            .join(Item, Item.itemid == Function.itemid)
            .where(Item.hostid.in_(templateids))
        )
        return self.store.select_ids(
            select(Trigger.triggerid)
            .join(Function, Function.triggerid == Trigger.triggerid)
            .join(Item, Item.itemid == Function.itemid)
            .where(Item.hostid == hostid, Trigger.templateid.in_(template_triggers))
        )

    def _owned_host_prototypes(self, hostid: int, templateids: Sequence[int]) -> List[int]:
        host_rule = aliased(Item)
        template_rule = aliased(Item)
        template_discovery = aliased(HostDiscovery)
        template_prototypes = (
            select(template_discovery.hostid)
            .join(template_rule, template_rule.itemid == template_discovery.parent_itemid)
            .where(template_rule.hostid.in_(templateids))
        )
        return self.store.select_ids(
            select(Host.hostid)
            .join(HostDiscovery, HostDiscovery.hostid == Host.hostid)
            .join(host_rule, host_rule.itemid == HostDiscovery.parent_itemid)
            .where(host_rule.hostid == hostid, Host.templateid.in_(template_prototypes))
        )

    def _owned_items(self, hostid: int, templateids: Sequence[int]) -> List[int]:
        template_item = aliased(Item)
        return self.store.select_ids(
            select(Item.itemid)
            .join(template_item, template_item.itemid == Item.templateid)
            .where(Item.hostid == hostid, template_item.hostid.in_(templateids))
        )

    # template unlink

    def unlink(self, hostid: int, templateids: Sequence[int]) -> CascadeStats:
        """Delete everything ``templateids`` own on ``hostid`` and the link rows."""
        logger.debug("Unlinking templates %s from host %s", list(templateids), hostid)

        self.delete_httptests(self._owned_httptests(hostid, templateids))
        self.delete_graphs(self._owned_graphs(hostid, templateids))
        self.delete_triggers(self._owned_triggers(hostid, templateids))
        self.delete_host_prototypes(self._owned_host_prototypes(hostid, templateids))
        self.delete_items(self._owned_items(hostid, templateids))
        self._delete_links(hostid, templateids)
        return self.stats

    def detach(self, hostid: int, templateids: Sequence[int]) -> CascadeStats:
        """Keep template-owned entities on the host but clear their template reference."""
        buf = self.store.new_buffer()
        self.store.begin_multiple_update(buf)

        for row in self._rows(HttpTest, HttpTest.httptestid, self._owned_httptests(hostid, templateids)):
            audit_entries.httptest_update(self.audit, row.httptestid, row.name, {"templateid": None})
            self.store.update_row(buf, "httptest", "httptestid", row.httptestid, {"templateid": None})
            self.stats.httptests += 1

        for row in self._rows(Graph, Graph.graphid, self._owned_graphs(hostid, templateids)):
            audit_entries.graph_update(self.audit, row.graphid, row.name, row.flags, {"templateid": None})
            self.store.update_row(buf, "graphs", "graphid", row.graphid, {"templateid": None})
            self.stats.graphs += 1

        for row in self._rows(Trigger, Trigger.triggerid, self._owned_triggers(hostid, templateids)):
            audit_entries.trigger_update(self.audit, row.triggerid, row.description, row.flags, {"templateid": None})
            self.store.update_row(buf, "triggers", "triggerid", row.triggerid, {"templateid": None})
            self.stats.triggers += 1

        for row in self._rows(Host, Host.hostid, self._owned_host_prototypes(hostid, templateids)):
            audit_entries.host_prototype_update(self.audit, row.hostid, row.name, {"templateid": None})
            self.store.update_row(buf, "hosts", "hostid", row.hostid, {"templateid": None})
            self.stats.host_prototypes += 1

        for row in self._rows(Item, Item.itemid, self._owned_items(hostid, templateids)):
            self.audit.record_update(audit_entries.item_resource(row.flags), row.itemid, row.name,
                                     {"item.templateid": ""})
            self.store.update_row(buf, "items", "itemid", row.itemid, {"templateid": None})
            self.stats.items += 1

        self.store.end_multiple_update(buf)
        self._delete_links(hostid, templateids)
        return self.stats

    def _rows(self, model, key, ids: Sequence[int]):
        if not ids:
            return []
        return self.store.query(select(model).where(key.in_(ids)).order_by(key)).scalars().all()

    def _delete_links(self, hostid: int, templateids: Sequence[int]) -> None:
        links = self.store.query(
            select(HostTemplate.hosttemplateid, HostTemplate.templateid, Host.name)
            .join(Host, Host.hostid == HostTemplate.hostid)
            .where(HostTemplate.hostid == hostid, HostTemplate.templateid.in_(templateids))
            .order_by(HostTemplate.templateid)
        ).all()
        if not links:
            return
        for _, templateid, name in links:
            self.audit.record_update(ResourceType.HOST, hostid, name)
            audit_entries.host_parent_template(self.audit, hostid, templateid, audit_entries.DETAILS_DELETE)
        self.stats.links += self.store.delete_ids("hosts_templates", "hosttemplateid", [r[0] for r in links])

    # entity deletes

    def delete_httptests(self, httptestids: Sequence[int]) -> None:
        """Delete web scenarios together with their scenario and step items."""
        if not httptestids:
            return
        itemids = self.store.select_ids(
            select(HttpTestItem.itemid).where(HttpTestItem.httptestid.in_(httptestids))
        ) + self.store.select_ids(
            select(HttpStepItem.itemid)
            .join(HttpStep, HttpStep.httpstepid == HttpStepItem.httpstepid)
            .where(HttpStep.httptestid.in_(httptestids))
        )
        self.delete_items(itemids)

        for row in self.store.query(
            select(HttpTest.httptestid, HttpTest.name).where(HttpTest.httptestid.in_(httptestids))
        ):
            self.audit.record_delete(ResourceType.SCENARIO, row.httptestid, row.name)
        self.stats.httptests += self.store.delete_ids("httptest", "httptestid", httptestids)

    def _children(self, column, parent_column, ids: Sequence[int]) -> List[int]:
        parents = set(ids)
        return [c for c in self.store.select_ids(select(column).where(parent_column.in_(ids))) if c not in parents]

    def delete_graphs(self, graphids: Sequence[int]) -> None:
        """Delete graphs and the graphs discovered from them."""
        if not graphids:
            return
        children = self._children(GraphDiscovery.graphid, GraphDiscovery.parent_graphid, graphids)
        for ids in (children, graphids):
            if not ids:
                continue
            for row in self.store.query(
                select(Graph.graphid, Graph.name, Graph.flags).where(Graph.graphid.in_(ids))
            ):
                resource, _ = audit_entries.graph_resource(row.flags)
                self.audit.record_delete(resource, row.graphid, row.name)
            self.stats.graphs += self.store.delete_ids("graphs", "graphid", ids)

    def delete_triggers(self, triggerids: Sequence[int]) -> None:
        """Delete triggers and the triggers discovered from them."""
        if not triggerids:
            return
        children = self._children(TriggerDiscovery.triggerid, TriggerDiscovery.parent_triggerid, triggerids)
        self._delete_trigger_rows(children)
        self._delete_trigger_rows(list(triggerids))

    def _delete_trigger_rows(self, triggerids: List[int]) -> None:
        if not triggerids:
            return
        for row in self.store.query(
            select(Trigger.triggerid, Trigger.description, Trigger.flags).where(Trigger.triggerid.in_(triggerids))
        ):
            resource, _ = audit_entries.trigger_resource(row.flags)
            self.audit.record_delete(resource, row.triggerid, row.description)

        self._delete_map_elements(SYSMAP_ELEMENT_TYPE_TRIGGER, triggerids)
        self._delete_action_conditions(CONDITION_TYPE_TRIGGER, triggerids)
        self.stats.triggers += self.store.delete_ids("triggers", "triggerid", triggerids)
        self._add_to_housekeeper(triggerids, "triggerid", EVENT_TABLES)

    def _triggers_by_items(self, itemids: Sequence[int]) -> List[int]:
        return self.store.select_ids(select(Function.triggerid).where(Function.itemid.in_(itemids)))

    def _graphs_by_items(self, itemids: Sequence[int]) -> List[int]:
        """Graphs left without any item once ``itemids`` are gone."""
        graphids = self.store.select_ids(select(GraphItem.graphid).where(GraphItem.itemid.in_(itemids)))
        if not graphids:
            return []
        keep = set(self.store.select_ids(
            select(GraphItem.graphid).where(GraphItem.graphid.in_(graphids), GraphItem.itemid.not_in(itemids))
        ))
        return [g for g in graphids if g not in keep]

    def delete_items(self, itemids: Sequence[int]) -> None:
        """Delete items, the items discovered from them and the triggers and graphs they leave behind."""
        itemids = sorted(set(itemids))
        if not itemids:
            return
        while True:
            children = set(self.store.select_ids(
                select(ItemDiscovery.itemid).where(ItemDiscovery.parent_itemid.in_(itemids))
            ))
            if children <= set(itemids):
                break
            itemids = sorted(set(itemids) | children)

        self.delete_graphs(self._graphs_by_items(itemids))
        self.delete_triggers(self._triggers_by_items(itemids))

        self._add_to_housekeeper(itemids, "itemid", HISTORY_TABLES)
        self._add_to_housekeeper(itemids, "itemid", EVENT_TABLES)
        self._add_to_housekeeper(itemids, "lldruleid", EVENT_TABLES)

        for row in self.store.query(
            select(Item.itemid, Item.name, Item.flags).where(Item.itemid.in_(itemids))
        ):
            self.audit.record_delete(audit_entries.item_resource(row.flags), row.itemid, row.name)
        self.stats.items += self.store.delete_ids("items", "itemid", itemids)

    def _delete_group_prototypes(self, group_prototypeids: Sequence[int]) -> None:
        if not group_prototypeids:
            return
        groupids = self.store.select_ids(
            select(GroupDiscovery.groupid).where(GroupDiscovery.parent_group_prototypeid.in_(group_prototypeids))
        )
        if groupids:
            for row in self.store.query(select(HostGroup.groupid, HostGroup.name).where(
                    HostGroup.groupid.in_(groupids))):
                self.audit.record_delete(ResourceType.HOST_GROUP, row.groupid, row.name)
            self.store.delete_ids("hstgrp", "groupid", groupids)
        self.store.delete_ids("group_prototype", "group_prototypeid", group_prototypeids)

    def delete_host_prototypes(self, prototypeids: Sequence[int]) -> None:
        """Delete host prototypes, the hosts discovered from them and their discovered groups."""
        if not prototypeids:
            return
        discovered = self.store.select_ids(
            select(HostDiscovery.hostid).where(HostDiscovery.parent_hostid.in_(prototypeids))
        )
        if discovered:
            self.delete_hosts(discovered)

        self._delete_group_prototypes(
            self.store.select_ids(select(GroupPrototype.group_prototypeid).where(GroupPrototype.hostid.in_(prototypeids)))
        )
        for row in self.store.query(select(Host.hostid, Host.name).where(Host.hostid.in_(prototypeids))):
            self.audit.record_delete(ResourceType.HOST_PROTOTYPE, row.hostid, row.name)
        self.stats.host_prototypes += self.store.delete_ids("hosts", "hostid", prototypeids)

    def delete_hosts(self, hostids: Sequence[int]) -> None:
        """Delete hosts with everything on them."""
        hostids = sorted(set(hostids))
        if not hostids:
            return

        names: Dict[int, str] = {
            row.hostid: row.name
            for row in self.store.query(select(Host.hostid, Host.name).where(Host.hostid.in_(hostids)))
        }
        if not names:
            logger.warning("No hosts found among %s, nothing to delete", hostids)
            return

        rule = aliased(Item)
        self.delete_host_prototypes(self.store.select_ids(
            select(HostDiscovery.hostid)
            .join(rule, rule.itemid == HostDiscovery.parent_itemid)
            .where(rule.hostid.in_(hostids), rule.flags == Flags.RULE)
        ))
        self.delete_httptests(self.store.select_ids(select(HttpTest.httptestid).where(HttpTest.hostid.in_(hostids))))
        self.delete_items(self.store.select_ids(select(Item.itemid).where(Item.hostid.in_(hostids))))

        self._delete_map_elements(SYSMAP_ELEMENT_TYPE_HOST, hostids)
        self._delete_action_conditions(CONDITION_TYPE_HOST, hostids)

        for hostid, name in names.items():
            self.audit.record_delete(ResourceType.HOST, hostid, name)
        self.stats.hosts += self.store.delete_ids("hosts", "hostid", list(names))

    # dependents without their own audit resource

    def _delete_map_elements(self, elementtype: int, ids: Sequence[int]) -> None:
        selementids = self.store.select_ids(
            select(SysmapElement.selementid)
            .where(SysmapElement.elementtype == elementtype, SysmapElement.elementid.in_(ids))
        )
        self.store.delete_ids("sysmaps_elements", "selementid", selementids)

    def _delete_action_conditions(self, conditiontype: int, ids: Sequence[int]) -> None:
        """Disable actions whose conditions reference deleted objects and drop those conditions."""
        rows = self.store.query(
            select(Condition.conditionid, Condition.actionid)
            .where(and_(Condition.conditiontype == conditiontype, Condition.value.in_([str(i) for i in ids])))
        ).all()
        if not rows:
            return
        actionids = sorted({r.actionid for r in rows})
        self.store.execute(
            update(Action).where(Action.actionid.in_(actionids)).values(status=ACTION_STATUS_DISABLED)
        )
        logger.warning("Disabled %d action(s) referencing deleted objects", len(actionids))
        self.store.delete_ids("conditions", "conditionid", [r.conditionid for r in rows])

    def _add_to_housekeeper(self, ids: Sequence[int], field: str, tables: Sequence[str]) -> None:
        if not ids:
            return
        housekeeperid = self.store.get_maxid_num("housekeeper", len(ids) * len(tables))
        insert = self.store.bulk_insert("housekeeper", "housekeeperid", "tablename", "field", "value")
        for value in ids:
            for table in tables:
                insert.add_values(housekeeperid, table, field, value)
                housekeeperid += 1
        insert.execute()
