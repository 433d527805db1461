"""
Web scenario family: copy template web scenarios to a host.

A host scenario with the same name is taken over by pointing its
``templateid`` at the template scenario (step parity was checked by the
validator). Otherwise the scenario is inserted together with its fields,
steps, step fields, tags and the scenario and step item references, the
latter resolved by item key on the host.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from sqlalchemy import select
from sqlalchemy.orm import aliased

from tmplink.audit import entries as audit_entries
from tmplink.audit.buffer import AuditBuffer
from tmplink.database.models import (
    HttpStep,
    HttpStepField,
    HttpStepItem,
    HttpTest,
    HttpTestField,
    HttpTestItem,
    HttpTestTag,
    Item,
)
from tmplink.database.store import RelationalStore

from .diff import Diff, DiffKind

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

SCENARIO_COLUMNS = (
    "name", "delay", "status", "agent", "authentication", "http_user", "http_password", "http_proxy", "retries",
)
STEP_COLUMNS = (
    "name", "no", "url", "timeout", "posts", "required", "status_codes", "follow_redirects", "retrieve_mode",
    "post_type",
)


@dataclass
class StepSnapshot:
    row: Row
    fields: List[Row] = field(default_factory=list)
    items: List[Row] = field(default_factory=list)


@dataclass
class ScenarioSnapshot:
    row: Row
    fields: List[Row] = field(default_factory=list)
    steps: List[StepSnapshot] = field(default_factory=list)
    tags: List[Row] = field(default_factory=list)
    items: List[Row] = field(default_factory=list)

    @property
    def httptestid(self) -> int:
        return self.row["httptestid"]

    @property
    def name(self) -> str:
        return self.row["name"]


@dataclass
class ScenarioDiffResult:
    diffs: List[Diff[ScenarioSnapshot]]
    # template item id -> host item id, for scenario and step items
    item_map: Dict[int, int]

    def of_kind(self, kind: DiffKind) -> List[Diff[ScenarioSnapshot]]:
        return [d for d in self.diffs if d.kind == kind]


def _rows(store: RelationalStore, model, column: str, ids: Sequence[int], order_by) -> Dict[int, List[Row]]:
    out: Dict[int, List[Row]] = {}
    table = model.__table__
    for row in store.query(table.select().where(table.c[column].in_(ids)).order_by(order_by)).mappings():
        out.setdefault(row[column], []).append(dict(row))
    return out


class HttpTestDiffer:
    def __init__(self, store: RelationalStore):
        self.store = store

    def diff(self, hostid: int, templateids: Sequence[int]) -> ScenarioDiffResult:
        host_test = aliased(HttpTest)
        rows = self.store.query(
            select(HttpTest.__table__, host_test.httptestid.label("host_httptestid"),
                   host_test.templateid.label("host_templateid"))
            .outerjoin(host_test, (host_test.hostid == hostid) & (host_test.name == HttpTest.name))
            .where(HttpTest.hostid.in_(templateids))
            .order_by(HttpTest.httptestid)
        ).mappings().all()

        diffs: List[Diff[ScenarioSnapshot]] = []
        new: Dict[int, ScenarioSnapshot] = {}
        for row in rows:
            snapshot = ScenarioSnapshot(row={c: row[c] for c in HttpTest.__table__.c.keys()})
            host_id = row["host_httptestid"]
            if host_id is None:
                new[snapshot.httptestid] = snapshot
                diffs.append(Diff.insert(snapshot))
            elif row["host_templateid"] == snapshot.httptestid:
                diffs.append(Diff.skip(snapshot, host_id))
            else:
                diffs.append(Diff.update(snapshot, host_id))

        item_map: Dict[int, int] = {}
        if new:
            self._fill(new)
            item_map = self._resolve_items(hostid, new.values())

        logger.debug(
            "Web scenario diff for host %s: %d insert, %d update, %d skip", hostid,
            len(new), sum(d.kind == DiffKind.UPDATE for d in diffs), sum(d.kind == DiffKind.SKIP for d in diffs),
        )
        return ScenarioDiffResult(diffs=diffs, item_map=item_map)

    def _fill(self, scenarios: Dict[int, ScenarioSnapshot]) -> None:
        ids = list(scenarios)
        fields = _rows(self.store, HttpTestField, "httptestid", ids, HttpTestField.httptest_fieldid)
        tags = _rows(self.store, HttpTestTag, "httptestid", ids, HttpTestTag.httptesttagid)
        items = _rows(self.store, HttpTestItem, "httptestid", ids, HttpTestItem.httptestitemid)
        steps = _rows(self.store, HttpStep, "httptestid", ids, HttpStep.no)

        stepids = [s["httpstepid"] for rows in steps.values() for s in rows]
        step_fields = _rows(self.store, HttpStepField, "httpstepid", stepids, HttpStepField.httpstep_fieldid)
        step_items = _rows(self.store, HttpStepItem, "httpstepid", stepids, HttpStepItem.httpstepitemid)

        for httptestid, scenario in scenarios.items():
            scenario.fields = fields.get(httptestid, [])
            scenario.tags = tags.get(httptestid, [])
            scenario.items = items.get(httptestid, [])
            scenario.steps = [
                StepSnapshot(row=s, fields=step_fields.get(s["httpstepid"], []),
                             items=step_items.get(s["httpstepid"], []))
                for s in steps.get(httptestid, [])
            ]

    def _resolve_items(self, hostid: int, scenarios) -> Dict[int, int]:
        itemids = set()
        for scenario in scenarios:
            itemids.update(r["itemid"] for r in scenario.items)
            for step in scenario.steps:
                itemids.update(r["itemid"] for r in step.items)
        if not itemids:
            return {}

        host_item = aliased(Item)
        return {
            row.template_itemid: row.host_itemid
            for row in self.store.query(
                select(Item.itemid.label("template_itemid"), host_item.itemid.label("host_itemid"))
                .join(host_item, (host_item.key_ == Item.key_) & (host_item.hostid == hostid))
                .where(Item.itemid.in_(itemids))
            )
        }


class HttpTestWriter:
    def __init__(self, store: RelationalStore, audit: AuditBuffer):
        self.store = store
        self.audit = audit

    def apply(self, hostid: int, result: ScenarioDiffResult) -> List[int]:
        """Write the diff; returns ids of inserted scenarios."""
        updates = result.of_kind(DiffKind.UPDATE)
        if updates:
            buf = self.store.new_buffer()
            self.store.begin_multiple_update(buf)
            for d in updates:
                values = {"templateid": d.template.httptestid}
                self.store.update_row(buf, "httptest", "httptestid", d.host_id, values)
                audit_entries.httptest_update(self.audit, d.host_id, d.template.name, values)
            self.store.end_multiple_update(buf)

        inserts = [d.template for d in result.of_kind(DiffKind.INSERT)]
        if not inserts:
            return []
        return self._insert(hostid, inserts, result.item_map)

    def _insert(self, hostid: int, scenarios: List[ScenarioSnapshot], item_map: Dict[int, int]) -> List[int]:
        steps = [step for s in scenarios for step in s.steps]

        def allocate(table, count):
            return self.store.get_maxid_num(table, count) if count else 0

        httptestid = allocate("httptest", len(scenarios))
        httpstepid = allocate("httpstep", len(steps))
        test_fieldid = allocate("httptest_field", sum(len(s.fields) for s in scenarios))
        step_fieldid = allocate("httpstep_field", sum(len(step.fields) for step in steps))
        tagid = allocate("httptest_tag", sum(len(s.tags) for s in scenarios))
        test_itemid = allocate("httptestitem", sum(len(s.items) for s in scenarios))
        step_itemid = allocate("httpstepitem", sum(len(step.items) for step in steps))

        tests = self.store.bulk_insert("httptest", "httptestid", *SCENARIO_COLUMNS, "hostid", "templateid")
        test_fields = self.store.bulk_insert("httptest_field", "httptest_fieldid", "httptestid", "type", "name",
                                             "value")
        test_steps = self.store.bulk_insert("httpstep", "httpstepid", "httptestid", *STEP_COLUMNS)
        step_fields = self.store.bulk_insert("httpstep_field", "httpstep_fieldid", "httpstepid", "type", "name",
                                             "value")
        tags = self.store.bulk_insert("httptest_tag", "httptesttagid", "httptestid", "tag", "value")
        test_items = self.store.bulk_insert("httptestitem", "httptestitemid", "httptestid", "itemid", "type")
        step_items = self.store.bulk_insert("httpstepitem", "httpstepitemid", "httpstepid", "itemid", "type")

        inserted = []
        for scenario in scenarios:
            row = {c: scenario.row[c] for c in SCENARIO_COLUMNS}
            row.update(hostid=hostid, templateid=scenario.httptestid)
            tests.add_values(httptestid, *(row[c] for c in SCENARIO_COLUMNS), hostid, scenario.httptestid)
            audit_entries.httptest_add(self.audit, httptestid, row)

            for f in scenario.fields:
                test_fields.add_values(test_fieldid, httptestid, f["type"], f["name"], f["value"])
                audit_entries.httptest_field(self.audit, httptestid, f["type"], test_fieldid, f["name"], f["value"])
                test_fieldid += 1

            for step in scenario.steps:
                test_steps.add_values(httpstepid, httptestid, *(step.row[c] for c in STEP_COLUMNS))
                audit_entries.httptest_step(self.audit, httptestid, httpstepid, step.row["no"], step.row)

                counters: Dict[int, int] = {}
                for f in step.fields:
                    step_fields.add_values(step_fieldid, httpstepid, f["type"], f["name"], f["value"])
                    counters[f["type"]] = counters.get(f["type"], 0) + 1
                    audit_entries.httptest_step_field(self.audit, httptestid, httpstepid, f["type"],
                                                      counters[f["type"]], f["name"], f["value"])
                    step_fieldid += 1

                for r in step.items:
                    if r["itemid"] not in item_map:
                        logger.warning('Web scenario "%s": step item %s has no counterpart on host %s',
                                       scenario.name, r["itemid"], hostid)
                        continue
                    step_items.add_values(step_itemid, httpstepid, item_map[r["itemid"]], r["type"])
                    step_itemid += 1
                httpstepid += 1

            for t in scenario.tags:
                tags.add_values(tagid, httptestid, t["tag"], t["value"])
                audit_entries.httptest_tag(self.audit, httptestid, tagid, t["tag"], t["value"])
                tagid += 1

            for r in scenario.items:
                if r["itemid"] not in item_map:
                    logger.warning('Web scenario "%s": item %s has no counterpart on host %s',
                                   scenario.name, r["itemid"], hostid)
                    continue
                test_items.add_values(test_itemid, httptestid, item_map[r["itemid"]], r["type"])
                test_itemid += 1

            inserted.append(httptestid)
            httptestid += 1

        # parents before children
        for insert in (tests, test_fields, test_steps, step_fields, tags, test_items, step_items):
            insert.execute()
        logger.debug("Inserted %d web scenario(s)", len(inserted))
        return inserted
