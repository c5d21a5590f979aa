"""
Rule provider and rule evaluation.

Rules are supplied per account by an injected provider; the engine keeps no
process-wide rule registry.
"""

from abc import ABC, abstractmethod
from typing import Optional, Protocol
import logging

from ..models import ReconciliationRule

logger = logging.getLogger(__name__)


class Describable(Protocol):
    description: str
    reference: Optional[str]


class RuleProvider(ABC):
    """Source of the ordered rule set for an account."""

    @abstractmethod
    def get_rules(self, account_id: str) -> list[ReconciliationRule]:
        """
        Return the rules for an account in evaluation order.

        Args:
            account_id: Account being reconciled or categorized

        Returns:
            Ordered list of rules (may be empty)
        """
        pass


class StaticRuleProvider(RuleProvider):
    """
    Rules fixed at construction, optionally overridden per account.
    """

    def __init__(
        self,
        rules: Optional[list[ReconciliationRule]] = None,
        account_rules: Optional[dict[str, list[ReconciliationRule]]] = None,
    ):
        self._rules = list(rules or [])
        self._account_rules = {k: list(v) for k, v in (account_rules or {}).items()}

    @classmethod
    def from_config(cls, config) -> "StaticRuleProvider":
        return cls(config.reconciliation_rules())

    def get_rules(self, account_id: str) -> list[ReconciliationRule]:
        return list(self._account_rules.get(account_id, self._rules))


class RuleEngine:
    """Evaluates an ordered rule set against a transaction."""

    def evaluate(
        self, txn: Describable, rules: list[ReconciliationRule]
    ) -> Optional[ReconciliationRule]:
        """
        Find the first rule matching the transaction's description or reference.

        Args:
            txn: Transaction with ``description`` and ``reference`` attributes
            rules: Rules in evaluation order

        Returns:
            The first matching rule, or None
        """
        for rule in rules:
            if rule.matches(txn.description) or rule.matches(txn.reference):
                logger.debug(f"Rule {rule.id} matched {txn.description!r}")
                return rule
        return None
