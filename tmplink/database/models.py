"""
SQLAlchemy database models for the tmplink template linkage engine.

This module defines the monitoring configuration tables the linkage
engine reads and writes: hosts and templates, items, triggers and their
functions, graphs, web scenarios, host prototypes with their
sub-collections, housekeeping and audit tables, and the id allocator.

Primary keys are never generated by the database. Every id comes from the
``ids`` allocator table (see ``tmplink.database.store``).
"""

from enum import IntEnum
from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# 64-bit ids everywhere; SQLite only treats INTEGER primary keys as rowids.
Id = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Base class for all database models."""


def _fk(target: str, nullable: bool = False) -> Any:
    return mapped_column(Id, ForeignKey(target, ondelete="CASCADE"), nullable=nullable, index=True)


class HostStatus(IntEnum):
    MONITORED = 0
    NOT_MONITORED = 1
    TEMPLATE = 3


class Flags(IntEnum):
    """Discovery flags shared by hosts, items, triggers and graphs."""

    NORMAL = 0
    RULE = 1
    PROTOTYPE = 2
    CREATED = 4


class Host(Base):
    """
    Monitored host, template (status=3) or host prototype (flags=2).
    """
    __tablename__ = "hosts"

    hostid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    host: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=HostStatus.MONITORED)
    flags: Mapped[int] = mapped_column(Integer, nullable=False, default=Flags.NORMAL)
    templateid: Mapped[Optional[int]] = _fk("hosts.hostid", nullable=True)
    discover: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    custom_interfaces: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("idx_hosts_host", "host"),
        Index("idx_hosts_status", "status"),
    )


class HostTemplate(Base):
    __tablename__ = "hosts_templates"

    hosttemplateid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    hostid: Mapped[int] = _fk("hosts.hostid")
    templateid: Mapped[int] = _fk("hosts.hostid")

    __table_args__ = (UniqueConstraint("hostid", "templateid", name="uq_hosts_templates"),)


class HostGroup(Base):
    __tablename__ = "hstgrp"

    groupid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    flags: Mapped[int] = mapped_column(Integer, nullable=False, default=Flags.NORMAL)


class HostGroupLink(Base):
    __tablename__ = "hosts_groups"

    hostgroupid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    hostid: Mapped[int] = _fk("hosts.hostid")
    groupid: Mapped[int] = _fk("hstgrp.groupid")


class Interface(Base):
    __tablename__ = "interface"

    interfaceid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    hostid: Mapped[int] = _fk("hosts.hostid")
    main: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    useip: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    ip: Mapped[str] = mapped_column(String(64), nullable=False, default="127.0.0.1")
    dns: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    port: Mapped[str] = mapped_column(String(64), nullable=False, default="10050")


class InterfaceSnmp(Base):
    __tablename__ = "interface_snmp"

    interfaceid: Mapped[int] = mapped_column(
        Id, ForeignKey("interface.interfaceid", ondelete="CASCADE"), primary_key=True, autoincrement=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    bulk: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    community: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    securityname: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    securitylevel: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    authpassphrase: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    privpassphrase: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    authprotocol: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    privprotocol: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    contextname: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class HostMacro(Base):
    __tablename__ = "hostmacro"

    hostmacroid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    hostid: Mapped[int] = _fk("hosts.hostid")
    macro: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    value: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class HostTag(Base):
    __tablename__ = "host_tag"

    hosttagid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    hostid: Mapped[int] = _fk("hosts.hostid")
    tag: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    value: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class HostDiscovery(Base):
    """Links a host prototype to its rule, or a discovered host to its prototype."""
    __tablename__ = "host_discovery"

    hostid: Mapped[int] = mapped_column(
        Id, ForeignKey("hosts.hostid", ondelete="CASCADE"), primary_key=True, autoincrement=False
    )
    parent_hostid: Mapped[Optional[int]] = mapped_column(Id, nullable=True, index=True)
    parent_itemid: Mapped[Optional[int]] = _fk("items.itemid", nullable=True)
    host: Mapped[str] = mapped_column(String(128), nullable=False, default="")


class GroupPrototype(Base):
    __tablename__ = "group_prototype"

    group_prototypeid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    hostid: Mapped[int] = _fk("hosts.hostid")
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    groupid: Mapped[Optional[int]] = _fk("hstgrp.groupid", nullable=True)
    templateid: Mapped[Optional[int]] = _fk("group_prototype.group_prototypeid", nullable=True)


class GroupDiscovery(Base):
    __tablename__ = "group_discovery"

    groupid: Mapped[int] = mapped_column(
        Id, ForeignKey("hstgrp.groupid", ondelete="CASCADE"), primary_key=True, autoincrement=False
    )
    parent_group_prototypeid: Mapped[int] = mapped_column(Id, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class Item(Base):
    __tablename__ = "items"

    itemid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    hostid: Mapped[int] = _fk("hosts.hostid")
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    key_: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    value_type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delay: Mapped[str] = mapped_column(String(1024), nullable=False, default="1m")
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    flags: Mapped[int] = mapped_column(Integer, nullable=False, default=Flags.NORMAL)
    templateid: Mapped[Optional[int]] = _fk("items.itemid", nullable=True)
    valuemapid: Mapped[Optional[int]] = mapped_column(Id, nullable=True)
    interfaceid: Mapped[Optional[int]] = mapped_column(Id, nullable=True)
    master_itemid: Mapped[Optional[int]] = _fk("items.itemid", nullable=True)
    inventory_link: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("hostid", "key_", name="uq_items_host_key"),)


class ItemDiscovery(Base):
    __tablename__ = "item_discovery"

    itemdiscoveryid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    itemid: Mapped[int] = _fk("items.itemid")
    parent_itemid: Mapped[int] = mapped_column(Id, nullable=False, index=True)
    key_: Mapped[str] = mapped_column(String(2048), nullable=False, default="")


class Trigger(Base):
    __tablename__ = "triggers"

    triggerid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    expression: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    url: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comments: Mapped[str] = mapped_column(Text, nullable=False, default="")
    templateid: Mapped[Optional[int]] = _fk("triggers.triggerid", nullable=True)
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    flags: Mapped[int] = mapped_column(Integer, nullable=False, default=Flags.NORMAL)
    recovery_mode: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    recovery_expression: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    correlation_mode: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correlation_tag: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    manual_close: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    opdata: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    discover: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    event_name: Mapped[str] = mapped_column(String(2048), nullable=False, default="")

    __table_args__ = (Index("idx_triggers_description", "description"),)


class Function(Base):
    __tablename__ = "functions"

    functionid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    itemid: Mapped[int] = _fk("items.itemid")
    triggerid: Mapped[int] = _fk("triggers.triggerid")
    name: Mapped[str] = mapped_column(String(12), nullable=False, default="")
    parameter: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class TriggerDepends(Base):
    __tablename__ = "trigger_depends"

    triggerdepid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    triggerid_down: Mapped[int] = _fk("triggers.triggerid")
    triggerid_up: Mapped[int] = _fk("triggers.triggerid")

    __table_args__ = (UniqueConstraint("triggerid_down", "triggerid_up", name="uq_trigger_depends"),)


class TriggerDiscovery(Base):
    __tablename__ = "trigger_discovery"

    triggerid: Mapped[int] = mapped_column(
        Id, ForeignKey("triggers.triggerid", ondelete="CASCADE"), primary_key=True, autoincrement=False
    )
    parent_triggerid: Mapped[int] = mapped_column(Id, nullable=False, index=True)


class TriggerTag(Base):
    __tablename__ = "trigger_tag"

    triggertagid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    triggerid: Mapped[int] = _fk("triggers.triggerid")
    tag: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    value: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class Graph(Base):
    __tablename__ = "graphs"

    graphid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    width: Mapped[int] = mapped_column(Integer, nullable=False, default=900)
    height: Mapped[int] = mapped_column(Integer, nullable=False, default=200)
    yaxismin: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    yaxismax: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
    templateid: Mapped[Optional[int]] = _fk("graphs.graphid", nullable=True)
    show_work_period: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    show_triggers: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    graphtype: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    show_legend: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    show_3d: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    percent_left: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    percent_right: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ymin_type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ymax_type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ymin_itemid: Mapped[Optional[int]] = mapped_column(Id, nullable=True)
    ymax_itemid: Mapped[Optional[int]] = mapped_column(Id, nullable=True)
    flags: Mapped[int] = mapped_column(Integer, nullable=False, default=Flags.NORMAL)
    discover: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_graphs_name", "name"),)


class GraphItem(Base):
    __tablename__ = "graphs_items"

    gitemid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    graphid: Mapped[int] = _fk("graphs.graphid")
    itemid: Mapped[int] = _fk("items.itemid")
    drawtype: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sortorder: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    color: Mapped[str] = mapped_column(String(6), nullable=False, default="009600")
    yaxisside: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calc_fnc: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class GraphDiscovery(Base):
    __tablename__ = "graph_discovery"

    graphid: Mapped[int] = mapped_column(
        Id, ForeignKey("graphs.graphid", ondelete="CASCADE"), primary_key=True, autoincrement=False
    )
    parent_graphid: Mapped[int] = mapped_column(Id, nullable=False, index=True)


class HttpTest(Base):
    """Web scenario."""
    __tablename__ = "httptest"

    httptestid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    delay: Mapped[str] = mapped_column(String(255), nullable=False, default="1m")
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    agent: Mapped[str] = mapped_column(String(255), nullable=False, default="Zabbix")
    authentication: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    http_user: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    http_password: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    http_proxy: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    retries: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    hostid: Mapped[int] = _fk("hosts.hostid")
    templateid: Mapped[Optional[int]] = _fk("httptest.httptestid", nullable=True)

    __table_args__ = (UniqueConstraint("hostid", "name", name="uq_httptest_host_name"),)


class HttpStep(Base):
    __tablename__ = "httpstep"

    httpstepid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    httptestid: Mapped[int] = _fk("httptest.httptestid")
    name: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    url: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    timeout: Mapped[str] = mapped_column(String(255), nullable=False, default="15s")
    posts: Mapped[str] = mapped_column(Text, nullable=False, default="")
    required: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status_codes: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    follow_redirects: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    retrieve_mode: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    post_type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class HttpTestItem(Base):
    __tablename__ = "httptestitem"

    httptestitemid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    httptestid: Mapped[int] = _fk("httptest.httptestid")
    itemid: Mapped[int] = _fk("items.itemid")
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class HttpStepItem(Base):
    __tablename__ = "httpstepitem"

    httpstepitemid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    httpstepid: Mapped[int] = _fk("httpstep.httpstepid")
    itemid: Mapped[int] = _fk("items.itemid")
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class HttpTestField(Base):
    __tablename__ = "httptest_field"

    httptest_fieldid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    httptestid: Mapped[int] = _fk("httptest.httptestid")
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")


class HttpStepField(Base):
    __tablename__ = "httpstep_field"

    httpstep_fieldid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    httpstepid: Mapped[int] = _fk("httpstep.httpstepid")
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")


class HttpTestTag(Base):
    __tablename__ = "httptest_tag"

    httptesttagid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    httptestid: Mapped[int] = _fk("httptest.httptestid")
    tag: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    value: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class Action(Base):
    __tablename__ = "actions"

    actionid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Condition(Base):
    __tablename__ = "conditions"

    conditionid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    actionid: Mapped[int] = _fk("actions.actionid")
    conditiontype: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    operator: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    value: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class SysmapElement(Base):
    __tablename__ = "sysmaps_elements"

    selementid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    sysmapid: Mapped[int] = mapped_column(Id, nullable=False, default=0)
    elementid: Mapped[int] = mapped_column(Id, nullable=False, default=0)
    elementtype: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Housekeeper(Base):
    """Deferred purge request consumed by the housekeeping process."""
    __tablename__ = "housekeeper"

    housekeeperid: Mapped[int] = mapped_column(Id, primary_key=True, autoincrement=False)
    tablename: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    field: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    value: Mapped[int] = mapped_column(Id, nullable=False)


class AuditLog(Base):
    __tablename__ = "auditlog2"

    auditid: Mapped[str] = mapped_column(String(25), primary_key=True)
    userid: Mapped[int] = mapped_column(Id, nullable=False)
    clock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ip: Mapped[str] = mapped_column(String(39), nullable=False, default="")
    action: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resourcetype: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resourceid: Mapped[int] = mapped_column(Id, nullable=False, default=0)
    resourcename: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    recordsetid: Mapped[str] = mapped_column(String(25), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("idx_auditlog2_recordsetid", "recordsetid"),
        Index("idx_auditlog2_resource", "resourcetype", "resourceid"),
    )


class IdCounter(Base):
    """Per-table id allocator row."""
    __tablename__ = "ids"

    table_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    field_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    nextid: Mapped[int] = mapped_column(Id, nullable=False)
