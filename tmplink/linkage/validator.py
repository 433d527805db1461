"""
Pre-flight validation of a candidate template set.

Checks run in a fixed order and the first failure wins:
1. consistency of the linked template set itself
2. inventory link collisions
3. web scenario step parity with same-named host scenarios
4. graph compatibility with same-named host graphs
5. item prototype / real item key collisions
6. interface coverage for the template item types
"""
import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import and_, exists, func, select
from sqlalchemy.orm import aliased

from tmplink.database.models import (
    Function,
    Graph,
    GraphItem,
    Host,
    HostStatus,
    HttpStep,
    HttpTest,
    Interface,
    Item,
    Trigger,
    TriggerDepends,
)
from tmplink.database.store import RelationalStore
from tmplink.errors import ValidationError

logger = logging.getLogger(__name__)

# item types
ITEM_TYPE_ZABBIX = 0
ITEM_TYPE_SNMPV1 = 1
ITEM_TYPE_TRAPPER = 2
ITEM_TYPE_SIMPLE = 3
ITEM_TYPE_SNMPV2C = 4
ITEM_TYPE_INTERNAL = 5
ITEM_TYPE_SNMPV3 = 6
ITEM_TYPE_ZABBIX_ACTIVE = 7
ITEM_TYPE_AGGREGATE = 8
ITEM_TYPE_HTTPTEST = 9
ITEM_TYPE_EXTERNAL = 10
ITEM_TYPE_DB_MONITOR = 11
ITEM_TYPE_IPMI = 12
ITEM_TYPE_SSH = 13
ITEM_TYPE_TELNET = 14
ITEM_TYPE_CALCULATED = 15
ITEM_TYPE_JMX = 16
ITEM_TYPE_SNMPTRAP = 17
ITEM_TYPE_DEPENDENT = 18
ITEM_TYPE_HTTPAGENT = 19
ITEM_TYPE_SNMP = 20

INTERFACELESS_ITEM_TYPES = (
    ITEM_TYPE_TRAPPER, ITEM_TYPE_INTERNAL, ITEM_TYPE_ZABBIX_ACTIVE, ITEM_TYPE_AGGREGATE,
    ITEM_TYPE_HTTPTEST, ITEM_TYPE_DB_MONITOR, ITEM_TYPE_CALCULATED, ITEM_TYPE_DEPENDENT,
)

# interface types
INTERFACE_TYPE_ANY = 0
INTERFACE_TYPE_AGENT = 1
INTERFACE_TYPE_SNMP = 2
INTERFACE_TYPE_IPMI = 3
INTERFACE_TYPE_JMX = 4

INTERFACE_TYPE_NAMES = {
    INTERFACE_TYPE_AGENT: "Agent",
    INTERFACE_TYPE_SNMP: "SNMP",
    INTERFACE_TYPE_IPMI: "IPMI",
    INTERFACE_TYPE_JMX: "JMX",
}


def interface_type_for_item(item_type: int) -> Optional[int]:
    """Interface type an item type polls through; None when it needs none we know of."""
    if item_type == ITEM_TYPE_ZABBIX:
        return INTERFACE_TYPE_AGENT
    if item_type in (ITEM_TYPE_SNMP, ITEM_TYPE_SNMPV1, ITEM_TYPE_SNMPV2C, ITEM_TYPE_SNMPV3, ITEM_TYPE_SNMPTRAP):
        return INTERFACE_TYPE_SNMP
    if item_type == ITEM_TYPE_IPMI:
        return INTERFACE_TYPE_IPMI
    if item_type == ITEM_TYPE_JMX:
        return INTERFACE_TYPE_JMX
    if item_type in (ITEM_TYPE_SIMPLE, ITEM_TYPE_EXTERNAL, ITEM_TYPE_SSH, ITEM_TYPE_TELNET, ITEM_TYPE_HTTPAGENT):
        return INTERFACE_TYPE_ANY
    return None


class ValidationResult(BaseModel):
    """Outcome of a validation run."""
    ok: bool = True
    reason: Optional[str] = None


class Validator:
    """
    Consistency checks over a candidate template set.

    ``validate_linked_templates`` needs only the template ids and is also
    re-run on the remaining set when templates are unlinked.
    ``validate_host`` checks the new templates against a target host.
    """

    def __init__(self, store: RelationalStore):
        self.store = store

    def check(self, templateids: Sequence[int], hostid: Optional[int] = None,
              new_templateids: Optional[Sequence[int]] = None) -> ValidationResult:
        try:
            self.validate_linked_templates(templateids)
            if hostid is not None:
                self.validate_host(hostid, new_templateids if new_templateids is not None else templateids)
        except ValidationError as e:
            return ValidationResult(ok=False, reason=e.reason)
        return ValidationResult()

    def _fail(self, reason: str) -> None:
        logger.info("Validation failed: %s", reason)
        raise ValidationError(reason)

    # linked template set

    def validate_linked_templates(self, templateids: Sequence[int]) -> None:
        templateids = sorted(set(templateids))
        if not templateids:
            return
        logger.debug("Validating linked templates %s", templateids)

        if len(templateids) > 1:
            self._check_item_keys(templateids)
        self._check_trigger_items(templateids)
        self._check_trigger_dependencies(templateids)
        if len(templateids) > 1:
            self._check_graph_names(templateids)
            self._check_httptest_names(templateids)

    def _check_item_keys(self, templateids: List[int]) -> None:
        row = self.store.query(
            select(Item.key_)
            .where(Item.hostid.in_(templateids))
            .group_by(Item.key_)
            .having(func.count() > 1)
            .order_by(Item.key_)
            .limit(1)
        ).first()
        if row is not None:
            self._fail(f'conflicting item key "{row[0]}" found')

    def _check_trigger_items(self, templateids: List[int]) -> None:
        f1, i1 = aliased(Function), aliased(Item)
        f2, i2 = aliased(Function), aliased(Item)
        row = self.store.query(
            select(Trigger.description, Host.host)
            .join(f1, f1.triggerid == Trigger.triggerid)
            .join(i1, i1.itemid == f1.itemid)
            .join(f2, f2.triggerid == Trigger.triggerid)
            .join(i2, i2.itemid == f2.itemid)
            .join(Host, Host.hostid == i2.hostid)
            .where(
                i1.hostid.in_(templateids),
                i2.hostid.not_in(templateids),
                Host.status == HostStatus.TEMPLATE,
            )
            .order_by(Trigger.triggerid)
            .limit(1)
        ).first()
        if row is not None:
            self._fail(f'trigger "{row[0]}" has items from template "{row[1]}"')

    def _check_trigger_dependencies(self, templateids: List[int]) -> None:
        t1, f1, i1, h1 = aliased(Trigger), aliased(Function), aliased(Item), aliased(Host)
        t2, f2, i2, h2 = aliased(Trigger), aliased(Function), aliased(Item), aliased(Host)
        row = self.store.query(
            select(t1.description, h1.host, t2.description, h2.host)
            .select_from(TriggerDepends)
            .join(t1, t1.triggerid == TriggerDepends.triggerid_down)
            .join(f1, f1.triggerid == t1.triggerid)
            .join(i1, i1.itemid == f1.itemid)
            .join(h1, h1.hostid == i1.hostid)
            .join(t2, t2.triggerid == TriggerDepends.triggerid_up)
            .join(f2, f2.triggerid == t2.triggerid)
            .join(i2, i2.itemid == f2.itemid)
            .join(h2, h2.hostid == i2.hostid)
            .where(
                i1.hostid.in_(templateids),
                i2.hostid.not_in(templateids),
                h2.status == HostStatus.TEMPLATE,
            )
            .limit(1)
        ).first()
        if row is not None:
            self._fail(
                f'trigger "{row[0]}" in template "{row[1]}"'
                f' has dependency from trigger "{row[2]}" in template "{row[3]}"'
            )

    def _graph_keys(self, graphid: int) -> List[str]:
        return [
            row[0] for row in self.store.query(
                select(Item.key_)
                .join(GraphItem, GraphItem.itemid == Item.itemid)
                .where(GraphItem.graphid == graphid)
                .order_by(Item.key_)
            )
        ]

    def _check_graph_names(self, templateids: List[int]) -> None:
        rows = self.store.query(
            select(Graph.graphid, Graph.name).distinct()
            .join(GraphItem, GraphItem.graphid == Graph.graphid)
            .join(Item, Item.itemid == GraphItem.itemid)
            .where(Item.hostid.in_(templateids))
            .order_by(Graph.graphid)
        ).all()

        keys_by_name: Dict[str, List[str]] = {}
        for graphid, name in rows:
            keys = self._graph_keys(graphid)
            if name in keys_by_name and keys_by_name[name] != keys:
                self._fail(f'template with graph "{name}" already linked to the host')
            keys_by_name.setdefault(name, keys)

    def _check_httptest_names(self, templateids: List[int]) -> None:
        row = self.store.query(
            select(HttpTest.name)
            .where(HttpTest.hostid.in_(templateids))
            .group_by(HttpTest.name)
            .having(func.count() > 1)
            .order_by(HttpTest.name)
            .limit(1)
        ).first()
        if row is not None:
            self._fail(f'template with web scenario "{row[0]}" already linked to the host')

    # target host

    def validate_host(self, hostid: int, templateids: Sequence[int]) -> None:
        templateids = sorted(set(templateids))
        if not templateids:
            return
        logger.debug("Validating templates %s against host %s", templateids, hostid)

        self._check_inventory_links(hostid, templateids)
        self._check_httptests(hostid, templateids)
        self._check_graphs(hostid, templateids)
        self._check_item_flags(hostid, templateids)
        self._check_interfaces(hostid, templateids)

    def _check_inventory_links(self, hostid: int, templateids: List[int]) -> None:
        reason = "two items cannot populate one host inventory field"

        row = self.store.query(
            select(Item.inventory_link)
            .where(Item.inventory_link != 0, Item.hostid.in_(templateids))
            .group_by(Item.inventory_link)
            .having(func.count() > 1)
            .limit(1)
        ).first()
        if row is not None:
            self._fail(reason)

        ti, hi, other = aliased(Item), aliased(Item), aliased(Item)
        row = self.store.query(
            select(ti.itemid)
            .join(hi, and_(hi.inventory_link == ti.inventory_link, hi.key_ != ti.key_))
            .where(
                ti.hostid.in_(templateids),
                hi.hostid == hostid,
                ti.inventory_link != 0,
                ~exists().where(other.hostid.in_(templateids), other.key_ == hi.key_),
            )
            .limit(1)
        ).first()
        if row is not None:
            self._fail(reason)

    def _steps(self, httptestid: int) -> List[tuple]:
        return [
            tuple(row) for row in self.store.query(
                select(HttpStep.no, HttpStep.name)
                .where(HttpStep.httptestid == httptestid)
                .order_by(HttpStep.no, HttpStep.name)
            )
        ]

    def _check_httptests(self, hostid: int, templateids: List[int]) -> None:
        t, h = aliased(HttpTest), aliased(HttpTest)
        pairs = self.store.query(
            select(t.httptestid, h.httptestid, t.name)
            .join(h, and_(h.name == t.name, h.hostid == hostid))
            .where(t.hostid.in_(templateids))
            .order_by(t.httptestid)
        ).all()
        for t_id, h_id, name in pairs:
            if self._steps(t_id) != self._steps(h_id):
                self._fail(f'web scenario "{name}" already exists on the host (steps are not identical)')

    def _check_graphs(self, hostid: int, templateids: List[int]) -> None:
        template_graphs = self.store.query(
            select(Graph.graphid, Graph.name, Graph.flags).distinct()
            .join(GraphItem, GraphItem.graphid == Graph.graphid)
            .join(Item, Item.itemid == GraphItem.itemid)
            .where(Item.hostid.in_(templateids))
            .order_by(Graph.graphid)
        ).all()

        for graphid, name, flags in template_graphs:
            template_keys = self._graph_keys(graphid)
            host_graphs = self.store.query(
                select(Graph.graphid, Graph.flags).distinct()
                .join(GraphItem, GraphItem.graphid == Graph.graphid)
                .join(Item, Item.itemid == GraphItem.itemid)
                .where(Item.hostid == hostid, Graph.name == name, Graph.templateid.is_(None))
            ).all()
            for host_graphid, host_flags in host_graphs:
                if host_flags != flags:
                    self._fail(f'graph prototype and real graph "{name}" have the same name')
                if self._graph_keys(host_graphid) != template_keys:
                    self._fail(f'graph "{name}" already exists on the host (items are not identical)')

    def _check_item_flags(self, hostid: int, templateids: List[int]) -> None:
        hi, ti = aliased(Item), aliased(Item)
        row = self.store.query(
            select(hi.key_)
            .join(ti, ti.key_ == hi.key_)
            .where(hi.flags != ti.flags, hi.hostid == hostid, ti.hostid.in_(templateids))
            .limit(1)
        ).first()
        if row is not None:
            self._fail(f'item prototype and real item "{row[0]}" have the same key')

    def _check_interfaces(self, hostid: int, templateids: List[int]) -> None:
        available = {
            row[0] for row in self.store.query(
                select(Interface.type).where(
                    Interface.hostid == hostid,
                    Interface.type.in_(tuple(INTERFACE_TYPE_NAMES)),
                    Interface.main == 1,
                )
            )
        }
        item_types = [
            row[0] for row in self.store.query(
                select(Item.type).distinct()
                .where(Item.type.not_in(INTERFACELESS_ITEM_TYPES), Item.hostid.in_(templateids))
                .order_by(Item.type)
            )
        ]
        for item_type in item_types:
            interface_type = interface_type_for_item(item_type)
            if interface_type is None:
                continue
            if interface_type == INTERFACE_TYPE_ANY:
                if not available:
                    self._fail("cannot find any interfaces on host")
            elif interface_type not in available:
                self._fail(f'cannot find "{INTERFACE_TYPE_NAMES[interface_type]}" host interface')
