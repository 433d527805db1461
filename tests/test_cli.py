"""
Tests for the tmplink command line interface.
"""
import json
import logging

import pytest
from click.testing import CliRunner
from sqlalchemy import select

from tmplink.cli.main import app
from tmplink.database import engine as db_engine
from tmplink.database.models import Host, HostTemplate, Trigger


@pytest.fixture(autouse=True)
def isolated_engine(monkeypatch):
    """Commands initialize the module-level engine; undo that after each test."""
    monkeypatch.setattr(db_engine, "engine", None)
    monkeypatch.setattr(db_engine, "SessionLocal", None)
    root = logging.getLogger()
    level = root.level
    yield
    if db_engine.engine is not None:
        db_engine.engine.dispose()
    root.setLevel(level)


@pytest.fixture
def invoke(db_url):
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(app, ["--db-url", db_url, *[str(a) for a in args]])

    return _invoke


@pytest.fixture
def linkable(file_seed):
    """T1 with a trigger over "cpu" and H1 carrying the same item."""
    t1, h1 = file_seed.template("T1"), file_seed.host("H1")
    cpu = file_seed.item(t1, "cpu")
    file_seed.item(h1, "cpu")
    file_seed.trigger("CPU high", "%s>90", [(cpu, "avg", "5m")])
    file_seed.session.commit()
    return t1, h1


class TestDatabaseCommands:
    """Test the db command group."""

    def test_init_and_stats(self, invoke):
        result = invoke("db", "init")
        assert result.exit_code == 0
        assert "Database initialized successfully" in result.output

        result = invoke("db", "stats")
        assert result.exit_code == 0
        assert "hosts_templates" in result.output

    def test_health(self, invoke):
        result = invoke("db", "health")
        assert result.exit_code == 0
        assert "Database is healthy (sqlite)" in result.output

    def test_db_url_from_environment(self, db_url, monkeypatch):
        monkeypatch.setenv("TMPLINK_DB_URL", db_url)
        result = CliRunner().invoke(app, ["db", "init"])
        assert result.exit_code == 0
        assert str(db_engine.engine.url) == db_url


class TestTemplateCommands:
    """Test the template and host command groups."""

    def test_link(self, invoke, linkable, file_seed):
        t1, h1 = linkable

        result = invoke("template", "link", h1, t1)

        assert result.exit_code == 0, result.output
        assert "Linked, record set" in result.output
        session = file_seed.session
        assert session.execute(select(HostTemplate.templateid).where(HostTemplate.hostid == h1)).scalars().all() == [t1]
        assert session.execute(select(Trigger.triggerid).where(Trigger.templateid.is_not(None))).first() is not None

    def test_relink_reports_nothing_to_change(self, invoke, linkable):
        t1, h1 = linkable
        invoke("template", "link", h1, t1)

        result = invoke("template", "link", h1, t1)

        assert result.exit_code == 0
        assert "Nothing to change" in result.output

    def test_link_json(self, invoke, linkable):
        t1, h1 = linkable

        result = invoke("template", "link", h1, t1, "--json")

        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert payload["linked"] == [t1]
        assert payload["families"]["triggers"]["inserted"] == 1

    def test_link_unknown_host_fails(self, invoke, linkable):
        t1, _ = linkable
        result = invoke("template", "link", 404, t1)
        assert result.exit_code == 1
        assert "Link failed" in result.output

    def test_unlink(self, invoke, linkable, file_seed):
        t1, h1 = linkable
        invoke("template", "link", h1, t1)

        result = invoke("template", "unlink", h1, t1)

        assert result.exit_code == 0, result.output
        assert "Unlinked, record set" in result.output
        assert "triggers" in result.output
        session = file_seed.session
        assert session.execute(select(Trigger.triggerid).where(Trigger.templateid.is_not(None))).first() is None

    def test_unlink_nothing_linked(self, invoke, linkable):
        t1, h1 = linkable
        result = invoke("template", "unlink", h1, t1)
        assert result.exit_code == 0
        assert "No linked templates to remove" in result.output

    def test_validate(self, invoke, linkable, file_seed):
        t1, h1 = linkable
        result = invoke("template", "validate", t1, "--host", h1)
        assert result.exit_code == 0
        assert "Templates are valid" in result.output

        t2 = file_seed.template("T2")
        file_seed.item(t2, "cpu")
        file_seed.session.commit()

        result = invoke("template", "validate", t1, t2)
        assert result.exit_code == 1
        assert 'conflicting item key "cpu" found' in result.output

    def test_host_delete(self, invoke, linkable, file_seed):
        t1, h1 = linkable

        result = invoke("host", "delete", h1)

        assert result.exit_code == 0, result.output
        assert "Deleted 1 host(s)" in result.output
        assert file_seed.session.execute(select(Host.hostid)).scalars().all() == [t1]
