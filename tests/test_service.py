"""
Tests for the linkage service requests.
"""
import json

import pytest
from sqlalchemy.orm import sessionmaker

from tmplink.audit.buffer import AuditAction, ResourceType
from tmplink.database.connection import session_scope
from tmplink.database.models import AuditLog, Host, HostTemplate, Trigger
from tmplink.errors import IntegrityError, ValidationError
from tmplink.linkage.service import LinkageService


class TestLink:
    """Test link requests."""

    def test_empty_template(self, seed, service, fetch):
        t1, h1 = seed.template("T1"), seed.host("H1")

        result = service.link(h1, [t1])

        links = fetch(HostTemplate)
        assert [(r["hostid"], r["templateid"]) for r in links] == [(h1, t1)]
        assert result.linked == [t1]
        assert result.resynced == []
        assert result.audit_rows == 1

        (row,) = fetch(AuditLog)
        assert row["recordsetid"] == result.record_set_id
        assert row["action"] == AuditAction.ADD
        assert row["resourcetype"] == ResourceType.HOST
        assert row["resourceid"] == h1
        assert json.loads(row["details"]) == {f"host.parentTemplates[{t1}]": "add"}

    def test_trigger_copy_and_audit(self, seed, service, fetch):
        t1, h1 = seed.template("T1"), seed.host("H1")
        ta, tb = seed.item(t1, "a"), seed.item(t1, "b")
        seed.item(h1, "a")
        seed.item(h1, "b")
        template_trigger, _ = seed.trigger("A or B", "%s>0 or %s>0", [(ta, "last", ""), (tb, "last", "")])

        result = service.link(h1, [t1])

        assert result.families["triggers"].inserted == 1
        assert result.families["graphs"].inserted == 0
        assert len(fetch(Trigger, Trigger.templateid == template_trigger)) == 1
        actions = sorted((r["resourcetype"], r["action"]) for r in fetch(AuditLog))
        assert actions == [(ResourceType.HOST, AuditAction.ADD), (ResourceType.TRIGGER, AuditAction.ADD)]

    def test_relink_is_noop(self, seed, service, fetch):
        t1, h1 = seed.template("T1"), seed.host("H1")
        cpu = seed.item(t1, "cpu")
        seed.item(h1, "cpu")
        seed.trigger("CPU high", "%s>90", [(cpu, "avg", "5m")])
        service.link(h1, [t1])
        before = fetch(AuditLog)

        result = service.link(h1, [t1])

        assert result.linked == []
        assert result.resynced == [t1]
        assert result.record_set_id is None
        assert result.families["triggers"].skipped == 1
        assert fetch(AuditLog) == before
        assert len(fetch(HostTemplate)) == 1

    def test_validation_message_names_templates_and_host(self, seed, service, fetch):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.httptest(t1, "Login", ["GET /", "POST /auth"])
        seed.httptest(h1, "Login", ["GET /", "POST /login"])

        with pytest.raises(ValidationError) as exc:
            service.link(h1, [t1])

        reason = 'web scenario "Login" already exists on the host (steps are not identical)'
        assert exc.value.reason == reason
        assert str(exc.value) == f'"T1" to host "H1": {reason}'
        assert fetch(HostTemplate) == []
        assert fetch(AuditLog) == []

    def test_unknown_host(self, seed, service):
        t1 = seed.template("T1")
        with pytest.raises(IntegrityError, match="host 404 does not exist"):
            service.link(404, [t1])

    def test_unknown_template(self, seed, service):
        h1 = seed.host("H1")
        with pytest.raises(IntegrityError, match=r"templates \[404\] do not exist"):
            service.link(h1, [404])

    def test_plain_host_is_not_a_template(self, seed, service):
        h1, h2 = seed.host("H1"), seed.host("H2")
        with pytest.raises(IntegrityError):
            service.link(h1, [h2])

    def test_failure_rolls_back(self, engine, session, seed, settings, fetch):
        t1, h1 = seed.template("T1"), seed.host("H1")
        cpu = seed.item(t1, "cpu")
        seed.trigger("CPU high", "%s>90", [(cpu, "avg", "5m")])
        session.commit()
        factory = sessionmaker(bind=engine, autoflush=False)

        # no "cpu" item on the host to bind the trigger function to
        with pytest.raises(IntegrityError):
            with session_scope(factory) as other:
                LinkageService(other, settings).link(h1, [t1])

        assert fetch(HostTemplate) == []
        assert fetch(AuditLog) == []


class TestUnlink:
    """Test unlink requests."""

    def test_not_linked_templates_are_ignored(self, seed, service, fetch):
        t1, h1 = seed.template("T1"), seed.host("H1")

        result = service.unlink(h1, [t1])

        assert result.record_set_id is None
        assert result.templateids == []
        assert fetch(AuditLog) == []

    def test_unlink_one_of_two(self, seed, service, fetch):
        t1, t2, h1 = seed.template("T1"), seed.template("T2"), seed.host("H1")
        service.link(h1, [t1, t2])

        result = service.unlink(h1, [t1, 404])

        assert result.templateids == [t1]
        assert [r["templateid"] for r in fetch(HostTemplate)] == [t2]

    def test_remaining_templates_validated(self, seed, service, fetch):
        t1, t2, h1 = seed.template("T1"), seed.template("T2"), seed.host("H1")
        a, b = seed.item(t1, "a"), seed.item(t2, "b")
        seed.trigger("A and B", "%s>0 and %s>0", [(b, "last", ""), (a, "last", "")])
        seed.link(h1, t1)
        seed.link(h1, t2)

        with pytest.raises(ValidationError) as exc:
            service.unlink(h1, [t1])

        assert exc.value.reason == 'trigger "A and B" has items from template "T1"'
        assert str(exc.value).startswith('"T1" to host "H1": ')
        assert len(fetch(HostTemplate)) == 2


class TestValidate:
    """Test dry-run validation."""

    def test_templates_only(self, seed, service):
        t1, t2 = seed.template("T1"), seed.template("T2")
        seed.item(t1, "cpu")
        seed.item(t2, "cpu")

        result = service.validate([t1, t2])

        assert not result.ok
        assert result.reason == 'conflicting item key "cpu" found'

    def test_against_host(self, seed, service, fetch):
        t1, h1 = seed.template("T1"), seed.host("H1", agent_interface=False)
        seed.item(t1, "cpu")

        result = service.validate([t1], hostid=h1)

        assert not result.ok
        assert "interface" in result.reason
        assert fetch(HostTemplate) == []

    def test_valid(self, seed, service):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.item(t1, "cpu")
        assert service.validate([t1], hostid=h1).ok


class TestDeleteHosts:
    """Test host deletion requests."""

    def test_delete(self, seed, service, fetch):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.item(h1, "cpu")
        seed.link(h1, t1)

        result = service.delete_hosts([h1])

        assert [h["hostid"] for h in fetch(Host)] == [t1]
        assert fetch(HostTemplate) == []
        assert result.deleted["hosts"] == 1
        assert result.deleted["items"] == 1
        rows = fetch(AuditLog, AuditLog.recordsetid == result.record_set_id)
        assert {(r["resourcetype"], r["action"]) for r in rows} == {
            (ResourceType.HOST, AuditAction.DELETE), (ResourceType.ITEM, AuditAction.DELETE),
        }
