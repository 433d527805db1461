"""
Host prototype family: copy template host prototypes to the host's
discovery rules.

The partner of a template prototype is the prototype hanging off the host
rule that was copied from the template rule, with an equal ``host``
string. A partner is updated through five sub-diffs: linked templates,
group prototypes, macros, tags and interfaces.
"""
import logging
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import aliased

from tmplink.audit import entries as audit_entries
from tmplink.audit.entries import DETAILS_ADD, DETAILS_DELETE
from tmplink.audit.buffer import AuditBuffer
from tmplink.database.models import (
    Flags,
    GroupPrototype,
    Host,
    HostDiscovery,
    HostMacro,
    HostTag,
    HostTemplate,
    Interface,
    InterfaceSnmp,
    Item,
)
from tmplink.database.store import RelationalStore

from .diff import Diff, DiffKind, SubDiff, compare_columns, dirty_values, keyed_diff, positional_diff

logger = logging.getLogger(__name__)

INTERFACE_TYPE_SNMP = 2

Row = Dict[str, Any]


class PrototypeDirty(IntFlag):
    TEMPLATEID = 0x01
    NAME = 0x02
    STATUS = 0x04
    DISCOVER = 0x08
    CUSTOM_INTERFACES = 0x10


UPDATE_COLUMNS = {
    PrototypeDirty.NAME: "name",
    PrototypeDirty.STATUS: "status",
    PrototypeDirty.DISCOVER: "discover",
    PrototypeDirty.CUSTOM_INTERFACES: "custom_interfaces",
}


class MacroDirty(IntFlag):
    VALUE = 0x1
    DESCRIPTION = 0x2
    TYPE = 0x4


MACRO_COLUMNS = {MacroDirty.VALUE: "value", MacroDirty.DESCRIPTION: "description", MacroDirty.TYPE: "type"}


class TagDirty(IntFlag):
    TAG = 0x1
    VALUE = 0x2


TAG_COLUMNS = {TagDirty.TAG: "tag", TagDirty.VALUE: "value"}


class InterfaceDirty(IntFlag):
    MAIN = 0x0001
    TYPE = 0x0002
    USEIP = 0x0004
    IP = 0x0008
    DNS = 0x0010
    PORT = 0x0020
    SNMP_VERSION = 0x0040
    SNMP_BULK = 0x0080
    SNMP_COMMUNITY = 0x0100
    SNMP_SECURITYNAME = 0x0200
    SNMP_SECURITYLEVEL = 0x0400
    SNMP_AUTHPASSPHRASE = 0x0800
    SNMP_PRIVPASSPHRASE = 0x1000
    SNMP_AUTHPROTOCOL = 0x2000
    SNMP_PRIVPROTOCOL = 0x4000
    SNMP_CONTEXTNAME = 0x8000
    SNMP_CREATE = 0x10000
    SNMP_DELETE = 0x20000


INTERFACE_COLUMNS = {
    InterfaceDirty.MAIN: "main",
    InterfaceDirty.TYPE: "type",
    InterfaceDirty.USEIP: "useip",
    InterfaceDirty.IP: "ip",
    InterfaceDirty.DNS: "dns",
    InterfaceDirty.PORT: "port",
}

SNMP_COLUMNS = {
    InterfaceDirty.SNMP_VERSION: "version",
    InterfaceDirty.SNMP_BULK: "bulk",
    InterfaceDirty.SNMP_COMMUNITY: "community",
    InterfaceDirty.SNMP_SECURITYNAME: "securityname",
    InterfaceDirty.SNMP_SECURITYLEVEL: "securitylevel",
    InterfaceDirty.SNMP_AUTHPASSPHRASE: "authpassphrase",
    InterfaceDirty.SNMP_PRIVPASSPHRASE: "privpassphrase",
    InterfaceDirty.SNMP_AUTHPROTOCOL: "authprotocol",
    InterfaceDirty.SNMP_PRIVPROTOCOL: "privprotocol",
    InterfaceDirty.SNMP_CONTEXTNAME: "contextname",
}


def interface_dirty(template: Row, host: Row) -> int:
    dirty = compare_columns(template, host, INTERFACE_COLUMNS)
    t_snmp, h_snmp = template.get("snmp"), host.get("snmp")
    if t_snmp is not None and h_snmp is None:
        dirty |= InterfaceDirty.SNMP_CREATE
    elif t_snmp is None and h_snmp is not None:
        dirty |= InterfaceDirty.SNMP_DELETE
    elif t_snmp is not None:
        dirty |= compare_columns(t_snmp, h_snmp, SNMP_COLUMNS)
    return dirty


@dataclass
class PrototypeSnapshot:
    row: Row
    # discovery rule on the target host this prototype belongs to
    rule_itemid: int
    templates: List[Row] = field(default_factory=list)
    groups: List[Row] = field(default_factory=list)
    macros: List[Row] = field(default_factory=list)
    tags: List[Row] = field(default_factory=list)
    interfaces: List[Row] = field(default_factory=list)

    @property
    def hostid(self) -> int:
        return self.row["hostid"]

    @property
    def name(self) -> str:
        return self.row["name"]


@dataclass
class PrototypeChanges:
    templates: SubDiff
    groups: SubDiff
    macros: SubDiff
    tags: SubDiff
    interfaces: SubDiff

    def __bool__(self) -> bool:
        return any((self.templates, self.groups, self.macros, self.tags, self.interfaces))


@dataclass
class PrototypeDiffResult:
    diffs: List[Diff[PrototypeSnapshot]]
    # keyed by template prototype id
    changes: Dict[int, PrototypeChanges]

    def of_kind(self, kind: DiffKind) -> List[Diff[PrototypeSnapshot]]:
        return [d for d in self.diffs if d.kind == kind]


def _group_key(row: Row):
    return row["name"], row["groupid"]


def diff_children(template: PrototypeSnapshot, host: Optional[PrototypeSnapshot]) -> PrototypeChanges:
    """Sub-diffs of one prototype pair; a missing host side yields pure additions."""
    h = host or PrototypeSnapshot(row={}, rule_itemid=template.rule_itemid)
    return PrototypeChanges(
        templates=keyed_diff(template.templates, h.templates,
                             lambda r: r["templateid"], lambda r: r["templateid"], lambda t, r: False),
        groups=keyed_diff(template.groups, h.groups, _group_key, _group_key,
                          lambda t, r: r["templateid"] != t["group_prototypeid"]),
        macros=keyed_diff(template.macros, h.macros, lambda r: r["macro"], lambda r: r["macro"],
                          lambda t, r: compare_columns(t, r, MACRO_COLUMNS) != 0),
        tags=positional_diff(template.tags, h.tags, lambda t, r: compare_columns(t, r, TAG_COLUMNS) != 0),
        interfaces=positional_diff(template.interfaces, h.interfaces, lambda t, r: interface_dirty(t, r) != 0),
    )


class HostPrototypeDiffer:
    def __init__(self, store: RelationalStore):
        self.store = store

    def _children(self, model, hostids: Sequence[int], order_by) -> Dict[int, List[Row]]:
        out: Dict[int, List[Row]] = {hostid: [] for hostid in hostids}
        if not hostids:
            return out
        table = model.__table__
        for row in self.store.query(
            table.select().where(table.c.hostid.in_(hostids)).order_by(table.c.hostid, order_by)
        ).mappings():
            out[row["hostid"]].append(dict(row))
        return out

    def _interfaces(self, hostids: Sequence[int]) -> Dict[int, List[Row]]:
        out: Dict[int, List[Row]] = {hostid: [] for hostid in hostids}
        if not hostids:
            return out
        snmp_table = InterfaceSnmp.__table__
        rows = self.store.query(
            select(Interface.__table__)
            .where(Interface.hostid.in_(hostids))
            .order_by(Interface.hostid, Interface.interfaceid)
        ).mappings().all()
        snmp = {}
        interfaceids = [row["interfaceid"] for row in rows]
        if interfaceids:
            snmp = {
                row["interfaceid"]: dict(row)
                for row in self.store.query(
                    snmp_table.select().where(snmp_table.c.interfaceid.in_(interfaceids))
                ).mappings()
            }
        for row in rows:
            interface = dict(row)
            interface["snmp"] = snmp.get(row["interfaceid"]) if row["type"] == INTERFACE_TYPE_SNMP else None
            out[row["hostid"]].append(interface)
        return out

    def _fill(self, snapshots: List[PrototypeSnapshot]) -> None:
        hostids = [s.hostid for s in snapshots]
        templates = self._children(HostTemplate, hostids, HostTemplate.hosttemplateid)
        groups = self._children(GroupPrototype, hostids, GroupPrototype.group_prototypeid)
        macros = self._children(HostMacro, hostids, HostMacro.hostmacroid)
        tags = self._children(HostTag, hostids, HostTag.hosttagid)
        interfaces = self._interfaces(hostids)
        for s in snapshots:
            s.templates = templates[s.hostid]
            s.groups = groups[s.hostid]
            s.macros = macros[s.hostid]
            s.tags = tags[s.hostid]
            s.interfaces = interfaces[s.hostid]

    def diff(self, hostid: int, templateids: Sequence[int]) -> PrototypeDiffResult:
        host_rule = aliased(Item)
        template_rule = aliased(Item)
        proto = Host.__table__

        templates = [
            PrototypeSnapshot(row={c: row[c] for c in proto.c.keys()}, rule_itemid=row["rule_itemid"])
            for row in self.store.query(
                select(proto, host_rule.itemid.label("rule_itemid"))
                .join(HostDiscovery, HostDiscovery.hostid == proto.c.hostid)
                .join(template_rule, template_rule.itemid == HostDiscovery.parent_itemid)
                .join(host_rule, host_rule.templateid == template_rule.itemid)
                .where(host_rule.hostid == hostid, template_rule.hostid.in_(templateids))
                .order_by(proto.c.hostid)
            ).mappings()
        ]
        if not templates:
            return PrototypeDiffResult(diffs=[], changes={})

        rule_itemids = sorted({t.rule_itemid for t in templates})
        partners: Dict[tuple, PrototypeSnapshot] = {}
        for row in self.store.query(
            select(proto, HostDiscovery.parent_itemid)
            .join(HostDiscovery, HostDiscovery.hostid == proto.c.hostid)
            .where(HostDiscovery.parent_itemid.in_(rule_itemids))
        ).mappings():
            snapshot = PrototypeSnapshot(row={c: row[c] for c in proto.c.keys()}, rule_itemid=row["parent_itemid"])
            partners[(snapshot.rule_itemid, snapshot.row["host"])] = snapshot

        self._fill(templates + list(partners.values()))

        diffs: List[Diff[PrototypeSnapshot]] = []
        changes: Dict[int, PrototypeChanges] = {}
        for template in templates:
            partner = partners.get((template.rule_itemid, template.row["host"]))
            sub = diff_children(template, partner)
            changes[template.hostid] = sub
            if partner is None:
                diffs.append(Diff.insert(template))
                continue
            dirty = compare_columns(template.row, partner.row, UPDATE_COLUMNS)
            if partner.row["templateid"] != template.hostid:
                dirty |= PrototypeDirty.TEMPLATEID
            if dirty or sub:
                diffs.append(Diff.update(template, partner.hostid, dirty))
            else:
                diffs.append(Diff.skip(template, partner.hostid))

        logger.debug(
            "Host prototype diff for host %s: %d insert, %d update, %d skip", hostid,
            sum(d.kind == DiffKind.INSERT for d in diffs),
            sum(d.kind == DiffKind.UPDATE for d in diffs),
            sum(d.kind == DiffKind.SKIP for d in diffs),
        )
        return PrototypeDiffResult(diffs=diffs, changes=changes)


class HostPrototypeWriter:
    def __init__(self, store: RelationalStore, audit: AuditBuffer):
        self.store = store
        self.audit = audit

    def apply(self, result: PrototypeDiffResult) -> List[int]:
        """Write the diff; returns ids of inserted host prototypes."""
        targets: List[tuple] = []
        inserts = result.of_kind(DiffKind.INSERT)
        if inserts:
            hostid = self.store.get_maxid_num("hosts", len(inserts))
            hosts = self.store.bulk_insert(
                "hosts", "hostid", "host", "name", "status", "flags", "templateid", "discover", "custom_interfaces",
            )
            discovery = self.store.bulk_insert("host_discovery", "hostid", "parent_itemid")
            for d in inserts:
                t = d.template
                row = dict(t.row, hostid=hostid, flags=Flags.PROTOTYPE, templateid=t.hostid)
                hosts.add_values(hostid, row["host"], row["name"], row["status"], row["flags"], row["templateid"],
                                 row["discover"], row["custom_interfaces"])
                discovery.add_values(hostid, t.rule_itemid)
                audit_entries.host_prototype_add(self.audit, hostid, row)
                targets.append((hostid, result.changes[t.hostid]))
                hostid += 1
            hosts.execute()
            discovery.execute()

        updates = result.of_kind(DiffKind.UPDATE)
        if updates:
            buf = self.store.new_buffer()
            self.store.begin_multiple_update(buf)
            for d in updates:
                values = dirty_values(d.dirty, UPDATE_COLUMNS, d.template.row)
                if d.dirty & PrototypeDirty.TEMPLATEID:
                    values["templateid"] = d.template.hostid
                self.store.update_row(buf, "hosts", "hostid", d.host_id, values)
                audit_entries.host_prototype_update(self.audit, d.host_id, d.template.name, values)
                targets.append((d.host_id, result.changes[d.template.hostid]))
            self.store.end_multiple_update(buf)

        if targets:
            self._save_children(targets)
            logger.debug("Wrote %d host prototype(s), %d new", len(targets), len(inserts))
        return [hostid for hostid, _ in targets[:len(inserts)]]

    def _allocate(self, table: str, count: int) -> int:
        return self.store.get_maxid_num(table, count) if count else 0

    def _save_children(self, targets: List[tuple]) -> None:
        buf = self.store.new_buffer()
        self.store.begin_multiple_update(buf)
        self._save_templates(targets)
        self._save_groups(targets, buf)
        self._save_macros(targets, buf)
        self._save_tags(targets, buf)
        self._save_interfaces(targets, buf)
        self.store.end_multiple_update(buf)

    def _save_templates(self, targets: List[tuple]) -> None:
        to_delete = []
        for hostid, changes in targets:
            for row in changes.templates.to_delete:
                audit_entries.host_prototype_template(self.audit, hostid, row["templateid"], DETAILS_DELETE)
                to_delete.append(row["hosttemplateid"])
        self.store.delete_ids("hosts_templates", "hosttemplateid", to_delete)

        nextid = self._allocate("hosts_templates", sum(len(c.templates.to_add) for _, c in targets))
        insert = self.store.bulk_insert("hosts_templates", "hosttemplateid", "hostid", "templateid")
        for hostid, changes in targets:
            for row in changes.templates.to_add:
                insert.add_values(nextid, hostid, row["templateid"])
                audit_entries.host_prototype_template(self.audit, hostid, row["templateid"], DETAILS_ADD)
                nextid += 1
        insert.execute()

    def _save_groups(self, targets: List[tuple], buf) -> None:
        to_delete = []
        for hostid, changes in targets:
            for row in changes.groups.to_delete:
                audit_entries.host_prototype_group_delete(self.audit, hostid, row["group_prototypeid"])
                to_delete.append(row["group_prototypeid"])
            for template, host in changes.groups.to_update:
                self.store.update_row(buf, "group_prototype", "group_prototypeid", host["group_prototypeid"],
                                      {"templateid": template["group_prototypeid"]})
                audit_entries.host_prototype_group(self.audit, hostid, template["name"], template["groupid"],
                                                   template["group_prototypeid"])
        self.store.delete_ids("group_prototype", "group_prototypeid", to_delete)

        nextid = self._allocate("group_prototype", sum(len(c.groups.to_add) for _, c in targets))
        insert = self.store.bulk_insert("group_prototype", "group_prototypeid", "hostid", "name", "groupid",
                                        "templateid")
        for hostid, changes in targets:
            for row in changes.groups.to_add:
                insert.add_values(nextid, hostid, row["name"], row["groupid"], row["group_prototypeid"])
                audit_entries.host_prototype_group(self.audit, hostid, row["name"], row["groupid"],
                                                   row["group_prototypeid"])
                nextid += 1
        insert.execute()

    def _save_macros(self, targets: List[tuple], buf) -> None:
        to_delete = []
        for hostid, changes in targets:
            for row in changes.macros.to_delete:
                audit_entries.host_prototype_macro_delete(self.audit, hostid, row["hostmacroid"])
                to_delete.append(row["hostmacroid"])
            for template, host in changes.macros.to_update:
                values = dirty_values(compare_columns(template, host, MACRO_COLUMNS), MACRO_COLUMNS, template)
                self.store.update_row(buf, "hostmacro", "hostmacroid", host["hostmacroid"], values)
                audit_entries.host_prototype_macro(self.audit, hostid, host["hostmacroid"], values)
        self.store.delete_ids("hostmacro", "hostmacroid", to_delete)

        nextid = self._allocate("hostmacro", sum(len(c.macros.to_add) for _, c in targets))
        insert = self.store.bulk_insert("hostmacro", "hostmacroid", "hostid", "macro", "value", "description", "type")
        for hostid, changes in targets:
            for row in changes.macros.to_add:
                insert.add_values(nextid, hostid, row["macro"], row["value"], row["description"], row["type"])
                audit_entries.host_prototype_macro(self.audit, hostid, nextid, row)
                nextid += 1
        insert.execute()

    def _save_tags(self, targets: List[tuple], buf) -> None:
        to_delete = []
        for hostid, changes in targets:
            for row in changes.tags.to_delete:
                audit_entries.host_prototype_tag_delete(self.audit, hostid, row["hosttagid"])
                to_delete.append(row["hosttagid"])
            for template, host in changes.tags.to_update:
                values = dirty_values(compare_columns(template, host, TAG_COLUMNS), TAG_COLUMNS, template)
                self.store.update_row(buf, "host_tag", "hosttagid", host["hosttagid"], values)
                audit_entries.host_prototype_tag(self.audit, hostid, host["hosttagid"], values)
        self.store.delete_ids("host_tag", "hosttagid", to_delete)

        nextid = self._allocate("host_tag", sum(len(c.tags.to_add) for _, c in targets))
        insert = self.store.bulk_insert("host_tag", "hosttagid", "hostid", "tag", "value")
        for hostid, changes in targets:
            for row in changes.tags.to_add:
                insert.add_values(nextid, hostid, row["tag"], row["value"])
                audit_entries.host_prototype_tag(self.audit, hostid, nextid, row)
                nextid += 1
        insert.execute()

    def _save_interfaces(self, targets: List[tuple], buf) -> None:
        to_delete = []
        snmp_delete = []
        snmp_add = []
        for hostid, changes in targets:
            for row in changes.interfaces.to_delete:
                audit_entries.host_prototype_interface_delete(self.audit, hostid, row["interfaceid"])
                to_delete.append(row["interfaceid"])
            for template, host in changes.interfaces.to_update:
                interfaceid = host["interfaceid"]
                dirty = interface_dirty(template, host)
                values = {}
                for flag, column in INTERFACE_COLUMNS.items():
                    if dirty & flag:
                        values[column] = template[column]
                self.store.update_row(buf, "interface", "interfaceid", interfaceid, values)

                snmp_values = {}
                if dirty & InterfaceDirty.SNMP_DELETE:
                    snmp_delete.append(interfaceid)
                elif dirty & InterfaceDirty.SNMP_CREATE:
                    snmp_add.append((interfaceid, template["snmp"]))
                    snmp_values = template["snmp"]
                else:
                    for flag, column in SNMP_COLUMNS.items():
                        if dirty & flag:
                            snmp_values[column] = template["snmp"][column]
                    self.store.update_row(buf, "interface_snmp", "interfaceid", interfaceid, snmp_values)
                audit_entries.host_prototype_interface(self.audit, hostid, interfaceid, values, snmp_values)

        self.store.delete_ids("interface_snmp", "interfaceid", snmp_delete)
        self.store.delete_ids("interface", "interfaceid", to_delete)

        nextid = self._allocate("interface", sum(len(c.interfaces.to_add) for _, c in targets))
        insert = self.store.bulk_insert("interface", "interfaceid", "hostid", "main", "type", "useip", "ip", "dns",
                                        "port")
        for hostid, changes in targets:
            for row in changes.interfaces.to_add:
                insert.add_values(nextid, hostid, *(row[c] for c in INTERFACE_COLUMNS.values()))
                if row.get("snmp") is not None:
                    snmp_add.append((nextid, row["snmp"]))
                audit_entries.host_prototype_interface(self.audit, hostid, nextid, row, row.get("snmp"))
                nextid += 1
        insert.execute()

        snmp_insert = self.store.bulk_insert("interface_snmp", "interfaceid", *SNMP_COLUMNS.values())
        for interfaceid, snmp in snmp_add:
            snmp_insert.add_values(interfaceid, *(snmp[c] for c in SNMP_COLUMNS.values()))
        snmp_insert.execute()
