import pytest

from ledger_recon.matching import RuleEngine, StaticRuleProvider
from ledger_recon.models import ReconciliationRule
from ledger_recon.utils.exceptions import ConfigurationError

from helpers.factories import bank


def test_default_rules_match_description(config):
    rules = config.reconciliation_rules()
    rule = RuleEngine().evaluate(bank("b1", "-2.50", "PAYPAL *FEE 12345"), rules)
    assert rule is not None
    assert rule.id == "paypal_fees"
    assert rule.target_category == "bank_fees"


def test_rules_match_reference_when_description_does_not(config):
    txn = bank("b1", "980.00", "Incoming transfer", reference="STRIPE PAYMENT 991")
    rule = RuleEngine().evaluate(txn, config.reconciliation_rules())
    assert rule is not None
    assert rule.id == "stripe_payments"


def test_first_matching_rule_wins():
    rules = [
        ReconciliationRule(id="broad", pattern="fee", target_category="fees"),
        ReconciliationRule(id="narrow", pattern="paypal.*fee", target_category="bank_fees"),
    ]
    rule = RuleEngine().evaluate(bank("b1", "-1.00", "PayPal fee"), rules)
    assert rule.id == "broad"


def test_no_rule_matches():
    rules = [ReconciliationRule(id="r", pattern="dividend", target_category="interest_income")]
    assert RuleEngine().evaluate(bank("b1", "-1.00", "Coffee"), rules) is None


def test_invalid_rule_pattern_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        ReconciliationRule(id="bad", pattern="(unclosed", target_category="x")


def test_rule_confidence_must_be_a_probability():
    with pytest.raises(ConfigurationError):
        ReconciliationRule(id="bad", pattern="x", target_category="x", confidence=1.5)


def test_static_provider_account_override():
    default = [ReconciliationRule(id="d", pattern="a", target_category="x")]
    special = [ReconciliationRule(id="s", pattern="b", target_category="y")]
    provider = StaticRuleProvider(default, account_rules={"acct-2": special})

    assert [r.id for r in provider.get_rules("acct-1")] == ["d"]
    assert [r.id for r in provider.get_rules("acct-2")] == ["s"]


def test_static_provider_from_config(config):
    provider = StaticRuleProvider.from_config(config)
    assert [r.id for r in provider.get_rules("any")] == [
        "paypal_fees",
        "stripe_payments",
        "bank_interest",
    ]
