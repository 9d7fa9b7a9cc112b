"""
Tests for rule set reconciliation.
"""
import pytest

from cloudprep.cloud.types import ReconcileResult, SecurityRule
from cloudprep.errors import ProviderError, ResourceNotFoundError
from cloudprep.gateway.reconciler import RuleSetReconciler, RuleSetStore


class InMemoryStore(RuleSetStore):
    """Rule sets kept as lists of rule names."""

    kind = "security group"

    def __init__(self, groups=None):
        self.groups = {name: list(rules) for name, rules in (groups or {}).items()}
        self.puts = []
        self.error = None

    def get(self, group):
        if self.error:
            raise self.error
        rules = self.groups.get(group)
        return None if rules is None else list(rules)

    def rule_name(self, rule):
        return rule

    def to_provider_rule(self, rule):
        return rule.name

    def put(self, group, rules, exists):
        self.puts.append((group, list(rules), exists))
        self.groups[group] = list(rules)

    def delete(self, group):
        return self.groups.pop(group, None) is not None


RULES = [
    SecurityRule(name="Submariner-External-udp-4500", port=4500, protocol="udp"),
    SecurityRule(name="Submariner-External-udp-4490", port=4490, protocol="udp"),
]


def test_ensure_rule_set_appends_and_preserves_foreign_rules():
    """Test managed rules are appended in one write, other rules untouched."""
    store = InMemoryStore({"nsg": ["ssh-allow"]})
    reconciler = RuleSetReconciler(store, "Submariner-External-")

    result = reconciler.ensure_rule_set("nsg", RULES)

    assert result == ReconcileResult.APPLIED
    assert store.groups["nsg"] == ["ssh-allow", "Submariner-External-udp-4500", "Submariner-External-udp-4490"]
    assert len(store.puts) == 1


def test_ensure_rule_set_is_noop_when_any_managed_rule_present():
    """Test the presence of one managed rule counts as reconciled."""
    store = InMemoryStore({"nsg": ["ssh-allow", "Submariner-External-udp-4500"]})
    reconciler = RuleSetReconciler(store, "Submariner-External-")

    assert reconciler.ensure_rule_set("nsg", RULES) == ReconcileResult.NOOP
    assert store.puts == []


def test_ensure_rule_set_missing_group():
    """Test an absent group is fatal unless creation is requested."""
    store = InMemoryStore()
    reconciler = RuleSetReconciler(store, "Submariner-External-")

    with pytest.raises(ResourceNotFoundError):
        reconciler.ensure_rule_set("nsg", RULES)

    assert reconciler.ensure_rule_set("nsg", RULES, create_missing=True) == ReconcileResult.APPLIED
    assert store.puts[0][2] is False


def test_remove_rules_by_prefix_keeps_other_prefixes():
    """Test removing one prefix leaves another prefix and foreign rules alone."""
    store = InMemoryStore({
        "nsg": ["ssh-allow", "Submariner-Internal-udp-4800", "Submariner-External-udp-4500"],
    })
    reconciler = RuleSetReconciler(store, "Submariner-External-")

    result = reconciler.remove_rules_by_prefix("nsg")

    assert result == ReconcileResult.REMOVED
    assert store.groups["nsg"] == ["ssh-allow", "Submariner-Internal-udp-4800"]


class PerRuleStore(InMemoryStore):
    """Deletes managed rules one by one instead of rewriting the group."""

    def __init__(self, groups=None):
        super().__init__(groups)
        self.removed = []

    def remove(self, group, kept, removed):
        self.removed.append((group, list(kept), list(removed)))


def test_remove_rules_by_prefix_hands_split_to_store():
    store = PerRuleStore({"network": ["installer-allow", "Submariner-Internal-udp-4800"]})
    reconciler = RuleSetReconciler(store, "Submariner-Internal-")

    assert reconciler.remove_rules_by_prefix("network") == ReconcileResult.REMOVED
    assert store.removed == [("network", ["installer-allow"], ["Submariner-Internal-udp-4800"])]
    assert store.puts == []


def test_store_must_implement_delete():
    class PartialStore(RuleSetStore):
        def get(self, group):
            return []

        def rule_name(self, rule):
            return rule

        def to_provider_rule(self, rule):
            return rule.name

        def put(self, group, rules, exists):
            pass

    with pytest.raises(TypeError):
        PartialStore()


@pytest.mark.parametrize("groups", [{}, {"nsg": ["ssh-allow"]}])
def test_remove_rules_by_prefix_noop(groups):
    """Test nothing is written when the group or its managed rules are absent."""
    store = InMemoryStore(groups)
    reconciler = RuleSetReconciler(store, "Submariner-External-")

    assert reconciler.remove_rules_by_prefix("nsg") == ReconcileResult.NOOP
    assert store.puts == []


def test_delete_rule_set():
    """Test deleting a group twice succeeds both times."""
    store = InMemoryStore({"gw-sg": []})
    reconciler = RuleSetReconciler(store, "Submariner-External-")

    assert reconciler.delete_rule_set("gw-sg") == ReconcileResult.REMOVED
    assert reconciler.delete_rule_set("gw-sg") == ReconcileResult.NOOP


def test_provider_errors_are_wrapped():
    """Test unexpected store failures carry the operation and group."""
    store = InMemoryStore({"nsg": []})
    store.error = RuntimeError("boom")
    reconciler = RuleSetReconciler(store, "Submariner-External-")

    with pytest.raises(ProviderError) as exc_info:
        reconciler.ensure_rule_set("nsg", RULES)

    assert exc_info.value.resource == "nsg"
    assert "getting security group" in str(exc_info.value)
    assert isinstance(exc_info.value.cause, RuntimeError)
