"""
Tests for pre-flight validation of template sets.
"""
import pytest

from tmplink.database.models import Flags, TriggerDepends
from tmplink.errors import ValidationError
from tmplink.linkage.validator import (
    INTERFACE_TYPE_AGENT,
    INTERFACE_TYPE_ANY,
    INTERFACE_TYPE_SNMP,
    ITEM_TYPE_SIMPLE,
    ITEM_TYPE_SNMPV2C,
    ITEM_TYPE_TRAPPER,
    Validator,
    interface_type_for_item,
)


@pytest.fixture
def validator(store):
    return Validator(store)


class TestLinkedTemplates:
    """Test consistency of the template set itself."""

    def test_valid_set(self, validator, seed):
        t1, t2 = seed.template("T1"), seed.template("T2")
        seed.item(t1, "cpu")
        seed.item(t2, "mem")
        validator.validate_linked_templates([t1, t2])
        assert validator.check([t1, t2]).ok

    def test_empty_set(self, validator):
        validator.validate_linked_templates([])

    def test_conflicting_item_key(self, validator, seed):
        t1, t2 = seed.template("T1"), seed.template("T2")
        seed.item(t1, "cpu")
        seed.item(t2, "cpu")

        with pytest.raises(ValidationError) as exc:
            validator.validate_linked_templates([t1, t2])
        assert exc.value.reason == 'conflicting item key "cpu" found'

    def test_trigger_with_items_from_other_template(self, validator, seed):
        t1, t3 = seed.template("T1"), seed.template("T3")
        a, b = seed.item(t1, "a"), seed.item(t3, "b")
        seed.trigger("Mixed", "%s>0 and %s>0", [(a, "last", ""), (b, "last", "")])

        result = validator.check([t1])
        assert not result.ok
        assert result.reason == 'trigger "Mixed" has items from template "T3"'

    def test_trigger_dependency_outside_set(self, validator, seed):
        t1, t3 = seed.template("T1"), seed.template("T3")
        a, b = seed.item(t1, "a"), seed.item(t3, "b")
        down, _ = seed.trigger("Down", "%s>0", [(a, "last", "")])
        up, _ = seed.trigger("Up", "%s>0", [(b, "last", "")])
        seed.add(TriggerDepends, triggerid_down=down, triggerid_up=up)

        assert validator.check([t1]).reason == (
            'trigger "Down" in template "T1" has dependency from trigger "Up" in template "T3"'
        )
        assert validator.check([t1, t3]).ok

    def test_graph_name_with_different_items(self, validator, seed):
        t1, t2 = seed.template("T1"), seed.template("T2")
        seed.graph("CPU", [seed.item(t1, "a")])
        seed.graph("CPU", [seed.item(t2, "b")])

        assert validator.check([t1, t2]).reason == 'template with graph "CPU" already linked to the host'

    def test_duplicate_web_scenario_name(self, validator, seed):
        t1, t2 = seed.template("T1"), seed.template("T2")
        seed.httptest(t1, "Login", ["GET /"])
        seed.httptest(t2, "Login", ["GET /"])

        assert validator.check([t1, t2]).reason == 'template with web scenario "Login" already linked to the host'


class TestHost:
    """Test the templates against a target host."""

    def test_web_scenario_step_mismatch(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.httptest(t1, "Login", ["GET /", "POST /auth"])
        seed.httptest(h1, "Login", ["GET /", "POST /login"])

        with pytest.raises(ValidationError) as exc:
            validator.validate_host(h1, [t1])
        assert exc.value.reason == 'web scenario "Login" already exists on the host (steps are not identical)'

    def test_web_scenario_same_steps(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.httptest(t1, "Login", ["GET /", "POST /auth"])
        seed.httptest(h1, "Login", ["GET /", "POST /auth"])
        validator.validate_host(h1, [t1])

    def test_inventory_link_twice_in_templates(self, validator, seed):
        t1, t2, h1 = seed.template("T1"), seed.template("T2"), seed.host("H1")
        seed.item(t1, "os", inventory_link=5, type=ITEM_TYPE_TRAPPER)
        seed.item(t2, "os.name", inventory_link=5, type=ITEM_TYPE_TRAPPER)

        assert validator.check([t1, t2], h1).reason == "two items cannot populate one host inventory field"

    def test_inventory_link_taken_by_host_item(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.item(t1, "os", inventory_link=5, type=ITEM_TYPE_TRAPPER)
        seed.item(h1, "system.uname", inventory_link=5, type=ITEM_TYPE_TRAPPER)

        assert validator.check([t1], h1).reason == "two items cannot populate one host inventory field"

    def test_inventory_link_on_same_key(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.item(t1, "os", inventory_link=5, type=ITEM_TYPE_TRAPPER)
        seed.item(h1, "os", inventory_link=5, type=ITEM_TYPE_TRAPPER)
        assert validator.check([t1], h1).ok

    def test_graph_items_differ_from_host_graph(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.graph("CPU", [seed.item(t1, "cpu.user"), seed.item(t1, "cpu.system")])
        seed.graph("CPU", [seed.item(h1, "cpu.user")])

        assert validator.check([t1], h1).reason == 'graph "CPU" already exists on the host (items are not identical)'

    def test_graph_prototype_named_like_graph(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.graph("CPU", [seed.item(t1, "cpu")], flags=Flags.PROTOTYPE)
        seed.graph("CPU", [seed.item(h1, "cpu.host")])

        assert validator.check([t1], h1).reason == 'graph prototype and real graph "CPU" have the same name'

    def test_item_prototype_and_real_item(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.item(t1, "vfs.fs.size[{#FS}]", flags=Flags.PROTOTYPE)
        seed.item(h1, "vfs.fs.size[{#FS}]")

        assert validator.check([t1], h1).reason == 'item prototype and real item "vfs.fs.size[{#FS}]" have the same key'

    def test_missing_agent_interface(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1", agent_interface=False)
        seed.item(t1, "agent.ping")

        assert validator.check([t1], h1).reason == 'cannot find "Agent" host interface'

    def test_missing_snmp_interface(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1")
        seed.item(t1, "ifInOctets", type=ITEM_TYPE_SNMPV2C)

        assert validator.check([t1], h1).reason == 'cannot find "SNMP" host interface'

    def test_any_interface(self, validator, seed):
        t1, bare, h1 = seed.template("T1"), seed.host("bare", agent_interface=False), seed.host("H1")
        seed.item(t1, "icmpping", type=ITEM_TYPE_SIMPLE)

        assert validator.check([t1], bare).reason == "cannot find any interfaces on host"
        assert validator.check([t1], h1).ok

    def test_interfaceless_items(self, validator, seed):
        t1, h1 = seed.template("T1"), seed.host("H1", agent_interface=False)
        seed.item(t1, "trap", type=ITEM_TYPE_TRAPPER)
        assert validator.check([t1], h1).ok


class TestInterfaceTypes:
    """Test item type to interface type mapping."""

    def test_mapping(self):
        assert interface_type_for_item(0) == INTERFACE_TYPE_AGENT
        assert interface_type_for_item(ITEM_TYPE_SNMPV2C) == INTERFACE_TYPE_SNMP
        assert interface_type_for_item(ITEM_TYPE_SIMPLE) == INTERFACE_TYPE_ANY
        assert interface_type_for_item(ITEM_TYPE_TRAPPER) is None
