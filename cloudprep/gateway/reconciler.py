"""
Create-if-absent and delete-if-present reconciliation of managed security rule sets.

A rule set is a named provider group (security group, network security group,
firewall) whose managed rules carry a recognisable name prefix. Rules without the
prefix belong to someone else and are always preserved.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional

from cloudprep.cloud.types import ReconcileResult, SecurityRule
from cloudprep.errors import CloudPrepError, ProviderError, ResourceNotFoundError

logger = logging.getLogger(__name__)


class RuleSetStore(ABC):
    """Provider-side persistence of one kind of rule set."""

    kind = "rule set"

    @abstractmethod
    def get(self, group: str) -> Optional[List[Any]]:
        """Return the rules currently in ``group``, or None if the group does not exist."""
        pass

    @abstractmethod
    def rule_name(self, rule: Any) -> str:
        """Return the identifying name (or description) of a provider rule."""
        pass

    @abstractmethod
    def to_provider_rule(self, rule: SecurityRule) -> Any:
        pass

    @abstractmethod
    def put(self, group: str, rules: List[Any], exists: bool) -> None:
        """Write the full rule list of ``group`` in one call, creating the group if needed.

        Implementations block until the provider's asynchronous operation completes.
        """
        pass

    @abstractmethod
    def delete(self, group: str) -> bool:
        """Delete the whole group. Returns False if it was already absent."""
        pass

    def remove(self, group: str, kept: List[Any], removed: List[Any]) -> None:
        """Drop ``removed`` from ``group``. By default the group is rewritten with ``kept`` only."""
        self.put(group, kept, True)


class RuleSetReconciler:
    """Reconciles the managed rules of a group, keyed on a rule-name prefix."""

    def __init__(self, store: RuleSetStore, prefix: str):
        """Initialize the reconciler.

        Args:
            store: Provider store for the rule sets.
            prefix: Name prefix identifying managed rules.
        """
        self.store = store
        self.prefix = prefix
        self.logger = logging.getLogger(f"{__name__}.RuleSetReconciler")

    def is_managed(self, rule: Any) -> bool:
        return self.prefix in (self.store.rule_name(rule) or "")

    def ensure_rule_set(
        self, group: str, desired: Iterable[SecurityRule], create_missing: bool = False
    ) -> ReconcileResult:
        """Make sure ``group`` carries the managed rules.

        The check is all-or-nothing: if any managed rule is present the set is
        considered reconciled and nothing is written.

        Args:
            group: Rule set name.
            desired: Rules that should be present.
            create_missing: Create the group when it does not exist.

        Returns:
            APPLIED if rules were written, NOOP otherwise.

        Raises:
            ResourceNotFoundError: If the group is absent and ``create_missing`` is False.
            ProviderError: If the provider call fails.
        """
        current = self._call("getting", group, self.store.get, group)
        if current is None:
            if not create_missing:
                raise ResourceNotFoundError(self.store.kind, group)
            current = []
            exists = False
        else:
            exists = True

        if any(self.is_managed(rule) for rule in current):
            self.logger.debug(f"{self.store.kind} {group} already has {self.prefix!r} rules")
            return ReconcileResult.NOOP

        merged = list(current) + [self.store.to_provider_rule(rule) for rule in desired]
        self._call("updating", group, self.store.put, group, merged, exists)
        self.logger.info(f"Applied {len(merged) - len(current)} {self.prefix!r} rule(s) to {self.store.kind} {group}")
        return ReconcileResult.APPLIED

    def remove_rules_by_prefix(self, group: str) -> ReconcileResult:
        """Drop every managed rule from ``group``, keeping all other rules.

        Returns:
            REMOVED if a write was issued, NOOP if the group or its managed rules were absent.
        """
        current = self._call("getting", group, self.store.get, group)
        if current is None:
            return ReconcileResult.NOOP

        kept = [rule for rule in current if not self.is_managed(rule)]
        removed = [rule for rule in current if self.is_managed(rule)]
        if not removed:
            return ReconcileResult.NOOP

        self._call("updating", group, self.store.remove, group, kept, removed)
        self.logger.info(f"Removed {len(removed)} {self.prefix!r} rule(s) from {self.store.kind} {group}")
        return ReconcileResult.REMOVED

    def delete_rule_set(self, group: str) -> ReconcileResult:
        """Delete the whole group, treating an absent group as success."""
        deleted = self._call("deleting", group, self.store.delete, group)
        return ReconcileResult.REMOVED if deleted else ReconcileResult.NOOP

    def _call(self, operation: str, group: str, fn, *args):
        try:
            return fn(*args)
        except CloudPrepError:
            raise
        except Exception as e:
            raise ProviderError(f"{operation} {self.store.kind}", group, e) from e
