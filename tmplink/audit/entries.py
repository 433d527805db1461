"""
Audit detail keys per entity family.

Each helper writes dotted key paths into an entry that must already be
recorded in the buffer, for example ``trigger.expression``,
``graph.gitems[12].color`` or ``httptest.steps[7].no[2].url``.
"""
from typing import Dict, Mapping, Optional, Tuple

from tmplink.database.models import Flags

from .buffer import AuditBuffer, DetailValue, ResourceType

DETAILS_ADD = "add"
DETAILS_UPDATE = "update"
DETAILS_DELETE = "delete"

TRIGGER_FIELDS = (
    "description", "expression", "recovery_expression", "event_name", "opdata", "comments", "flags", "priority",
    "state", "status", "templateid", "type", "url", "value", "recovery_mode", "correlation_mode",
    "correlation_tag", "manual_close", "discover",
)

GRAPH_FIELDS = (
    "name", "width", "height", "yaxismin", "yaxismax", "show_work_period", "show_triggers", "templateid",
    "graphtype", "show_legend", "show_3d", "percent_left", "percent_right", "ymin_type", "ymax_type",
    "ymin_itemid", "ymax_itemid", "flags", "discover",
)

GRAPH_ITEM_FIELDS = ("itemid", "drawtype", "sortorder", "color", "yaxisside", "calc_fnc", "type")

HOST_PROTOTYPE_FIELDS = ("status", "templateid", "discover", "custom_interfaces")

HTTPTEST_FIELDS = (
    "delay", "status", "agent", "authentication", "http_user", "http_password", "http_proxy",
    "retries", "hostid", "templateid",
)

HTTPSTEP_FIELDS = (
    "name", "url", "timeout", "posts", "required", "status_codes", "follow_redirects", "retrieve_mode",
)

INTERFACE_FIELDS = ("main", "type", "useip", "ip", "dns", "port")

SNMP_FIELDS = (
    "version", "bulk", "community", "securityname", "securitylevel", "authpassphrase",
    "privpassphrase", "authprotocol", "privprotocol", "contextname",
)

# httptest_field / httpstep_field type to audit collection name
HTTP_FIELD_KEYS = {0: "headers", 1: "variables", 2: "posts", 3: "query_fields"}


def trigger_resource(flags: int) -> Tuple[ResourceType, str]:
    if flags == Flags.PROTOTYPE:
        return ResourceType.TRIGGER_PROTOTYPE, "triggerprototype"
    return ResourceType.TRIGGER, "trigger"


def graph_resource(flags: int) -> Tuple[ResourceType, str]:
    if flags == Flags.PROTOTYPE:
        return ResourceType.GRAPH_PROTOTYPE, "graphprototype"
    return ResourceType.GRAPH, "graph"


def item_resource(flags: int) -> ResourceType:
    if flags == Flags.PROTOTYPE:
        return ResourceType.ITEM_PROTOTYPE
    if flags == Flags.RULE:
        return ResourceType.DISCOVERY_RULE
    return ResourceType.ITEM


def _fields(prefix: str, names, values: Mapping[str, DetailValue]) -> Dict[str, DetailValue]:
    details = {}
    for name in names:
        if name in values:
            value = values[name]
            details[f"{prefix}.{name}"] = "" if value is None else value
    return details


# Triggers

def trigger_add(audit: AuditBuffer, triggerid: int, row: Mapping) -> None:
    resource, prefix = trigger_resource(row["flags"])
    audit.record_add(resource, triggerid, row["description"], _fields(prefix, TRIGGER_FIELDS, row))


def trigger_update(audit: AuditBuffer, triggerid: int, description: str, flags: int,
                   changes: Mapping[str, DetailValue]) -> None:
    resource, prefix = trigger_resource(flags)
    audit.record_update(resource, triggerid, description, _fields(prefix, TRIGGER_FIELDS, changes))


def trigger_dependency(audit: AuditBuffer, triggerid: int, flags: int, triggerdepid: int,
                       triggerid_up: int) -> None:
    resource, prefix = trigger_resource(flags)
    audit.update_field(resource, triggerid, f"{prefix}.dependencies[{triggerdepid}]", triggerid_up)


def trigger_tag(audit: AuditBuffer, triggerid: int, flags: int, triggertagid: int, tag: str,
                value: str) -> None:
    resource, prefix = trigger_resource(flags)
    audit.update_field(resource, triggerid, f"{prefix}.tags[{triggertagid}].tag", tag)
    audit.update_field(resource, triggerid, f"{prefix}.tags[{triggertagid}].value", value)


def trigger_tag_delete(audit: AuditBuffer, triggerid: int, flags: int, triggertagid: int) -> None:
    resource, prefix = trigger_resource(flags)
    audit.update_field(resource, triggerid, f"{prefix}.tags[{triggertagid}]", DETAILS_DELETE)


# Graphs

def graph_add(audit: AuditBuffer, graphid: int, row: Mapping) -> None:
    resource, prefix = graph_resource(row["flags"])
    audit.record_add(resource, graphid, row["name"], _fields(prefix, GRAPH_FIELDS, row))


def graph_update(audit: AuditBuffer, graphid: int, name: str, flags: int,
                 changes: Mapping[str, DetailValue]) -> None:
    resource, prefix = graph_resource(flags)
    audit.record_update(resource, graphid, name, _fields(prefix, GRAPH_FIELDS, changes))


def graph_item(audit: AuditBuffer, graphid: int, flags: int, gitemid: int,
               values: Mapping[str, DetailValue]) -> None:
    resource, prefix = graph_resource(flags)
    for name, value in _fields(f"{prefix}.gitems[{gitemid}]", GRAPH_ITEM_FIELDS, values).items():
        audit.update_field(resource, graphid, name, value)


def graph_item_delete(audit: AuditBuffer, graphid: int, flags: int, gitemid: int) -> None:
    resource, prefix = graph_resource(flags)
    audit.update_field(resource, graphid, f"{prefix}.gitems[{gitemid}]", DETAILS_DELETE)


# Hosts

def host_parent_template(audit: AuditBuffer, hostid: int, templateid: int, details_action: str) -> None:
    audit.update_field(ResourceType.HOST, hostid, f"host.parentTemplates[{templateid}]", details_action)


# Host prototypes

HP = ResourceType.HOST_PROTOTYPE


def host_prototype_add(audit: AuditBuffer, hostid: int, row: Mapping) -> None:
    audit.record_add(HP, hostid, row["name"], _fields("hostprototype", HOST_PROTOTYPE_FIELDS, row))


def host_prototype_update(audit: AuditBuffer, hostid: int, name: str,
                          changes: Optional[Mapping[str, DetailValue]] = None) -> None:
    audit.record_update(HP, hostid, name, _fields("hostprototype", HOST_PROTOTYPE_FIELDS, changes or {}))


def host_prototype_group(audit: AuditBuffer, hostid: int, name: str, groupid: Optional[int],
                         templateid: Optional[int]) -> None:
    if name:
        audit.update_field(HP, hostid, f"hostprototype.groupPrototypes[{name}]", templateid or 0)
    elif groupid:
        audit.update_field(HP, hostid, f"hostprototype.groupLinks[{groupid}]", templateid or 0)


def host_prototype_group_delete(audit: AuditBuffer, hostid: int, group_prototypeid: int) -> None:
    audit.update_field(HP, hostid, f"hostprototype.groupPrototypes[{group_prototypeid}]", DETAILS_DELETE)


def host_prototype_template(audit: AuditBuffer, hostid: int, templateid: int, details_action: str) -> None:
    audit.update_field(HP, hostid, f"hostprototype.templates[{templateid}]", details_action)


def host_prototype_macro(audit: AuditBuffer, hostid: int, hostmacroid: int,
                         values: Mapping[str, DetailValue]) -> None:
    for name in ("macro", "value", "description", "type"):
        if name in values:
            audit.update_field(HP, hostid, f"hostprototype.macros[{hostmacroid}].{name}", values[name])


def host_prototype_macro_delete(audit: AuditBuffer, hostid: int, hostmacroid: int) -> None:
    audit.update_field(HP, hostid, f"hostprototype.macros[{hostmacroid}]", DETAILS_DELETE)


def host_prototype_tag(audit: AuditBuffer, hostid: int, hosttagid: int, values: Mapping[str, DetailValue]) -> None:
    for name in ("tag", "value"):
        if name in values:
            audit.update_field(HP, hostid, f"hostprototype.tags[{hosttagid}].{name}", values[name])


def host_prototype_tag_delete(audit: AuditBuffer, hostid: int, hosttagid: int) -> None:
    audit.update_field(HP, hostid, f"hostprototype.tags[{hosttagid}]", DETAILS_DELETE)


def host_prototype_interface(audit: AuditBuffer, hostid: int, interfaceid: int,
                             values: Mapping[str, DetailValue],
                             snmp: Optional[Mapping[str, DetailValue]] = None) -> None:
    prefix = f"hostprototype.interfaces[{interfaceid}]"
    for name, value in _fields(prefix, INTERFACE_FIELDS, values).items():
        audit.update_field(HP, hostid, name, value)
    if snmp:
        for name, value in _fields(f"{prefix}.details", SNMP_FIELDS, snmp).items():
            audit.update_field(HP, hostid, name, value)


def host_prototype_interface_delete(audit: AuditBuffer, hostid: int, interfaceid: int) -> None:
    audit.update_field(HP, hostid, f"hostprototype.interfaces[{interfaceid}]", DETAILS_DELETE)


# Web scenarios

def httptest_add(audit: AuditBuffer, httptestid: int, row: Mapping) -> None:
    audit.record_add(ResourceType.SCENARIO, httptestid, row["name"], _fields("httptest", HTTPTEST_FIELDS, row))


def httptest_update(audit: AuditBuffer, httptestid: int, name: str, changes: Mapping[str, DetailValue]) -> None:
    audit.record_update(ResourceType.SCENARIO, httptestid, name, _fields("httptest", HTTPTEST_FIELDS, changes))


def httptest_field(audit: AuditBuffer, httptestid: int, field_type: int, fieldid: int, name: str,
                   value: str) -> None:
    collection = HTTP_FIELD_KEYS.get(field_type, "fields")
    audit.update_field(ResourceType.SCENARIO, httptestid, f"httptest.{collection}[{fieldid}].name", name)
    audit.update_field(ResourceType.SCENARIO, httptestid, f"httptest.{collection}[{fieldid}].value", value)


def httptest_tag(audit: AuditBuffer, httptestid: int, httptesttagid: int, tag: str, value: str) -> None:
    audit.update_field(ResourceType.SCENARIO, httptestid, f"httptest.tags[{httptesttagid}].tag", tag)
    audit.update_field(ResourceType.SCENARIO, httptestid, f"httptest.tags[{httptesttagid}].value", value)


def httptest_step(audit: AuditBuffer, httptestid: int, httpstepid: int, no: int,
                  values: Mapping[str, DetailValue]) -> None:
    prefix = f"httptest.steps[{httpstepid}].no[{no}]"
    for name, value in _fields(prefix, HTTPSTEP_FIELDS, values).items():
        audit.update_field(ResourceType.SCENARIO, httptestid, name, value)


def httptest_step_field(audit: AuditBuffer, httptestid: int, httpstepid: int, field_type: int,
                        field_no: int, name: str, value: str) -> None:
    """``field_no`` counts fields of one type within one step of one scenario."""
    collection = HTTP_FIELD_KEYS.get(field_type, "fields")
    prefix = f"httptest.steps[{httpstepid}].{collection}[{field_no}]"
    audit.update_field(ResourceType.SCENARIO, httptestid, f"{prefix}.name", name)
    audit.update_field(ResourceType.SCENARIO, httptestid, f"{prefix}.value", value)
