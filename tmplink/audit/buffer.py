"""
Request-scoped audit collector.

Entries are keyed by (resource type, entity id). Recording the same entity
twice merges into one entry, which is how nested changes (expression,
tags, graph items) attach to the same change record. ``flush`` writes one
``auditlog2`` row per entry under a single record-set id and empties the
buffer.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterator, Optional, Tuple, Union

from tmplink.config import Settings, settings as default_settings
from tmplink.database.store import RelationalStore
from tmplink.errors import IntegrityError, TransportError
from tmplink.utils.cuid import new_cuid
from tmplink.utils.retry import retry

logger = logging.getLogger(__name__)

DetailValue = Union[str, int, float]


class AuditAction(IntEnum):
    ADD = 1
    UPDATE = 2
    DELETE = 3


class ResourceType(IntEnum):
    HOST = 4
    GRAPH = 6
    TRIGGER = 13
    HOST_GROUP = 14
    ITEM = 15
    SCENARIO = 22
    DISCOVERY_RULE = 23
    TRIGGER_PROTOTYPE = 31
    GRAPH_PROTOTYPE = 35
    ITEM_PROTOTYPE = 36
    HOST_PROTOTYPE = 37


@dataclass
class AuditEntry:
    id: int
    name: str
    action: AuditAction
    resource_type: ResourceType
    details: Dict[str, DetailValue] = field(default_factory=dict)

    def details_json(self) -> str:
        return json.dumps(self.details, sort_keys=True)


EntryKey = Tuple[ResourceType, int]


class AuditBuffer:
    """In-memory audit entries for one linkage request."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._entries: Dict[EntryKey, AuditEntry] = {}

    def init(self) -> None:
        """Discard everything recorded so far."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AuditEntry]:
        return iter(self._entries.values())

    def get(self, resource_type: ResourceType, entity_id: int) -> Optional[AuditEntry]:
        return self._entries.get((resource_type, entity_id))

    def _record(
        self,
        action: AuditAction,
        resource_type: ResourceType,
        entity_id: int,
        name: str,
        details: Optional[Dict[str, DetailValue]] = None,
    ) -> AuditEntry:
        key = (resource_type, entity_id)
        entry = self._entries.get(key)
        if entry is None:
            entry = AuditEntry(id=entity_id, name=name, action=action, resource_type=resource_type)
            self._entries[key] = entry
        elif action == AuditAction.DELETE and entry.action != AuditAction.DELETE:
            # a deleted entity supersedes pending changes to it
            entry.action = AuditAction.DELETE
            entry.details.clear()
        if details:
            entry.details.update(details)
        return entry

    def record_add(self, resource_type: ResourceType, entity_id: int, name: str,
                   details: Optional[Dict[str, DetailValue]] = None) -> AuditEntry:
        return self._record(AuditAction.ADD, resource_type, entity_id, name, details)

    def record_update(self, resource_type: ResourceType, entity_id: int, name: str,
                      details: Optional[Dict[str, DetailValue]] = None) -> AuditEntry:
        return self._record(AuditAction.UPDATE, resource_type, entity_id, name, details)

    def record_delete(self, resource_type: ResourceType, entity_id: int, name: str) -> AuditEntry:
        return self._record(AuditAction.DELETE, resource_type, entity_id, name)

    def update_field(self, resource_type: ResourceType, entity_id: int, key: str, value: DetailValue) -> None:
        """
        Set ``key`` in the details of an already recorded entity.

        Raises:
            IntegrityError: If the entity has no entry in the buffer
        """
        entry = self._entries.get((resource_type, entity_id))
        if entry is None:
            logger.critical("Audit update for unknown %s id %s (key %s)", resource_type.name, entity_id, key)
            raise IntegrityError(f"audit entry for {resource_type.name.lower()} {entity_id} does not exist")
        if isinstance(value, bool):
            value = int(value)
        elif value is None:
            value = ""
        entry.details[key] = value

    def flush(self, store: RelationalStore, record_set_id: Optional[str] = None) -> int:
        """
        Insert one audit row per buffered entry and empty the buffer.

        Returns:
            Number of audit rows written
        """
        record_set_id = record_set_id or new_cuid()
        entries = [
            entry for entry in self._entries.values()
            if entry.action != AuditAction.UPDATE or entry.details
        ]
        self._entries.clear()

        if not self.settings.AUDIT_ENABLED or not entries:
            return 0

        clock = int(time.time())
        insert = store.bulk_insert(
            "auditlog2", "auditid", "userid", "clock", "action", "ip", "resourceid",
            "resourcename", "resourcetype", "recordsetid", "details",
        )
        for entry in entries:
            insert.add_values(
                new_cuid(), self.settings.AUDIT_USER_ID, clock, int(entry.action), "", entry.id,
                entry.name, int(entry.resource_type), record_set_id, entry.details_json(),
            )

        written = len(insert.rows)
        writer = retry(
            retries=self.settings.FLUSH_RETRIES,
            delay=self.settings.FLUSH_RETRY_DELAY,
            catch_exceptions=TransportError,
        )(insert.execute)
        writer()
        logger.debug("Flushed %d audit entries under record set %s", written, record_set_id)
        return written
