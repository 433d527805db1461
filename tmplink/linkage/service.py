"""
Linkage service: link, unlink, validate and host deletion requests.

Each request runs on the caller's session, so all of its writes share
one transaction. The service collects audit entries in a request-scoped
buffer and flushes them under one record-set id before returning.
"""
import logging
from dataclasses import asdict
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from tmplink.audit import entries as audit_entries
from tmplink.audit.buffer import AuditBuffer, ResourceType
from tmplink.config import Settings, settings as default_settings
from tmplink.database.models import Host, HostStatus, HostTemplate
from tmplink.database.store import RelationalStore
from tmplink.errors import IntegrityError, ValidationError
from tmplink.utils.cuid import new_cuid

from .cascade import Cascade
from .diff import Diff, DiffKind
from .graphs import GraphDiffer, GraphWriter
from .host_prototypes import HostPrototypeDiffer, HostPrototypeWriter
from .httptests import HttpTestDiffer, HttpTestWriter
from .triggers import TriggerDiffer, TriggerWriter
from .validator import ValidationResult, Validator

logger = logging.getLogger(__name__)


class FamilyStats(BaseModel):
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    @classmethod
    def from_diffs(cls, diffs: Sequence[Diff]) -> "FamilyStats":
        return cls(
            inserted=sum(d.kind == DiffKind.INSERT for d in diffs),
            updated=sum(d.kind == DiffKind.UPDATE for d in diffs),
            skipped=sum(d.kind == DiffKind.SKIP for d in diffs),
        )


class LinkResult(BaseModel):
    """Outcome of a link request."""
    hostid: int
    record_set_id: Optional[str] = None
    linked: List[int] = []
    resynced: List[int] = []
    families: Dict[str, FamilyStats] = {}
    audit_rows: int = 0


class UnlinkResult(BaseModel):
    """Outcome of an unlink or host delete request."""
    record_set_id: Optional[str] = None
    templateids: List[int] = []
    deleted: Dict[str, int] = {}
    audit_rows: int = 0


class LinkageService:
    """
    Entry point for linkage requests.

    Args:
        session: Session whose transaction the request runs in
        settings: Engine settings, the module defaults when omitted
    """

    def __init__(self, session: Session, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.store = RelationalStore(session, self.settings)
        self.audit = AuditBuffer(self.settings)
        self.validator = Validator(self.store)

    # lookups

    def _host(self, hostid: int) -> Host:
        host = self.store.query(select(Host).where(Host.hostid == hostid)).scalar_one_or_none()
        if host is None:
            logger.critical("Host %s does not exist", hostid)
            raise IntegrityError(f"host {hostid} does not exist")
        return host

    def _templates(self, templateids: Sequence[int]) -> Dict[int, str]:
        names = {
            row.hostid: row.host
            for row in self.store.query(
                select(Host.hostid, Host.host)
                .where(Host.hostid.in_(templateids), Host.status == HostStatus.TEMPLATE)
            )
        }
        missing = sorted(set(templateids) - set(names))
        if missing:
            logger.critical("Templates %s do not exist", missing)
            raise IntegrityError(f"templates {missing} do not exist")
        return names

    def linked_templates(self, hostid: int) -> List[int]:
        return self.store.select_ids(select(HostTemplate.templateid).where(HostTemplate.hostid == hostid))

    @staticmethod
    def _describe(names: Dict[int, str], templateids: Sequence[int], host: Host) -> str:
        listed = ", ".join(f'"{names[t]}"' for t in sorted(templateids))
        return f'{listed} to host "{host.host}"'

    def _flush(self, record_set_id: str) -> int:
        return self.audit.flush(self.store, record_set_id)

    # requests

    def validate(self, templateids: Sequence[int], hostid: Optional[int] = None) -> ValidationResult:
        """Run the pre-flight checks without writing anything."""
        templateids = sorted(set(templateids))
        self._templates(templateids)
        if hostid is None:
            return self.validator.check(templateids)

        self._host(hostid)
        linked = self.linked_templates(hostid)
        new = [t for t in templateids if t not in linked]
        return self.validator.check(sorted(set(linked) | set(templateids)), hostid, new)

    def link(self, hostid: int, templateids: Sequence[int]) -> LinkResult:
        """
        Link templates to a host and copy their triggers, graphs, host
        prototypes and web scenarios.

        Templates that are already linked are re-synchronized: their
        entities go through the same diff and unchanged ones are skipped.

        Raises:
            ValidationError: If the template set cannot be linked to the host
            IntegrityError: On unknown ids or a broken invariant
        """
        templateids = sorted(set(templateids))
        host = self._host(hostid)
        names = self._templates(templateids)
        linked = self.linked_templates(hostid)
        new = [t for t in templateids if t not in linked]

        try:
            self.validator.validate_linked_templates(sorted(set(linked) | set(templateids)))
            if new:
                self.validator.validate_host(hostid, new)
        except ValidationError as e:
            message = f"{self._describe(names, templateids, host)}: {e.reason}"
            logger.warning("Cannot link %s", message)
            raise ValidationError(e.reason, message) from e

        self.audit.init()
        result = LinkResult(hostid=hostid, linked=new, resynced=[t for t in templateids if t in linked])
        try:
            if new:
                self._add_links(host, new)

            prototypes = HostPrototypeDiffer(self.store).diff(hostid, templateids)
            HostPrototypeWriter(self.store, self.audit).apply(prototypes)
            result.families["host_prototypes"] = FamilyStats.from_diffs(prototypes.diffs)

            triggers = TriggerDiffer(self.store).diff(hostid, templateids)
            TriggerWriter(self.store, self.audit).apply(hostid, triggers)
            result.families["triggers"] = FamilyStats.from_diffs(triggers.diffs)

            graphs = GraphDiffer(self.store).diff(hostid, templateids)
            GraphWriter(self.store, self.audit).apply(hostid, graphs)
            result.families["graphs"] = FamilyStats.from_diffs(graphs.diffs)

            httptests = HttpTestDiffer(self.store).diff(hostid, templateids)
            HttpTestWriter(self.store, self.audit).apply(hostid, httptests)
            result.families["httptests"] = FamilyStats.from_diffs(httptests.diffs)

            if len(self.audit):
                result.record_set_id = new_cuid()
                result.audit_rows = self._flush(result.record_set_id)
        except Exception:
            self.audit.init()
            raise

        logger.info(
            "Linked %s (new: %s, resynced: %s), %d audit row(s)",
            self._describe(names, templateids, host), new, result.resynced, result.audit_rows,
        )
        return result

    def _add_links(self, host: Host, templateids: List[int]) -> None:
        hosttemplateid = self.store.get_maxid_num("hosts_templates", len(templateids))
        insert = self.store.bulk_insert("hosts_templates", "hosttemplateid", "hostid", "templateid")
        self.audit.record_add(ResourceType.HOST, host.hostid, host.name)
        for templateid in templateids:
            insert.add_values(hosttemplateid, host.hostid, templateid)
            audit_entries.host_parent_template(self.audit, host.hostid, templateid, audit_entries.DETAILS_ADD)
            hosttemplateid += 1
        insert.execute()

    def unlink(self, hostid: int, templateids: Sequence[int], keep: bool = False) -> UnlinkResult:
        """
        Unlink templates from a host.

        Entities the templates own on the host are deleted, or detached
        from the template when ``keep`` is set.

        Raises:
            ValidationError: If the templates that stay linked are inconsistent
        """
        templateids = sorted(set(templateids))
        host = self._host(hostid)
        linked = self.linked_templates(hostid)
        targets = [t for t in templateids if t in linked]
        ignored = [t for t in templateids if t not in linked]
        if ignored:
            logger.warning("Templates %s are not linked to host %s, ignoring", ignored, hostid)
        if not targets:
            return UnlinkResult()

        names = self._templates(targets)
        remaining = [t for t in linked if t not in targets]
        try:
            self.validator.validate_linked_templates(remaining)
        except ValidationError as e:
            message = f"{self._describe(names, targets, host)}: {e.reason}"
            logger.warning("Cannot unlink %s", message)
            raise ValidationError(e.reason, message) from e

        self.audit.init()
        try:
            cascade = Cascade(self.store, self.audit)
            stats = cascade.detach(hostid, targets) if keep else cascade.unlink(hostid, targets)
            record_set_id = new_cuid()
            audit_rows = self._flush(record_set_id)
        except Exception:
            self.audit.init()
            raise

        logger.info("Unlinked %s (%s), %d audit row(s)", self._describe(names, targets, host),
                    "kept entities" if keep else "cleared", audit_rows)
        return UnlinkResult(record_set_id=record_set_id, templateids=targets, deleted=asdict(stats),
                            audit_rows=audit_rows)

    def delete_hosts(self, hostids: Sequence[int]) -> UnlinkResult:
        """Delete hosts together with everything on them."""
        self.audit.init()
        try:
            cascade = Cascade(self.store, self.audit)
            cascade.delete_hosts(hostids)
            record_set_id = new_cuid()
            audit_rows = self._flush(record_set_id)
        except Exception:
            self.audit.init()
            raise

        logger.info("Deleted %d host(s), %d audit row(s)", cascade.stats.hosts, audit_rows)
        return UnlinkResult(record_set_id=record_set_id, deleted=asdict(cascade.stats), audit_rows=audit_rows)
