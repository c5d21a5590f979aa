"""Configuration loader and validation for reconciliation settings."""

from pathlib import Path
from typing import Any, Optional
import logging

import yaml
from pydantic import BaseModel, Field, field_validator

from .models.reconciliation import ReconciliationRule

logger = logging.getLogger(__name__)


class InputConfig(BaseModel):
    """Configuration for CSV ingestion."""

    statement: dict[str, Any] = Field(
        default_factory=lambda: {
            "encoding": "utf-8",
            "delimiter": ",",
            "date_format": "%Y-%m-%d",
            "column_mappings": {
                "id": "Transaction_ID",
                "date": "Date",
                "description": "Description",
                "amount": "Amount",
                "balance": "Balance",
                "reference": "Reference",
                "type": "Type",
            },
        }
    )
    ledger: dict[str, Any] = Field(
        default_factory=lambda: {
            "encoding": "utf-8",
            "delimiter": ",",
            "date_format": "%Y-%m-%d",
            "column_mappings": {
                "id": "ID",
                "type": "Type",
                "amount": "Amount",
                "date": "Date",
                "description": "Description",
                "category": "Category",
                "reference": "Reference",
                "status": "Status",
                "related_entity_id": "Related_Entity_ID",
            },
        }
    )


class MatchingConfig(BaseModel):
    """Thresholds and weights of the matching pipeline."""

    exact_amount_tolerance: float = 0.01
    exact_date_tolerance_days: int = 1
    exact_confidence: float = 0.95
    fuzzy_threshold: float = 0.70
    description_weight: float = 0.6
    amount_weight: float = 0.4
    amount_near_threshold: float = 1.0
    amount_proximity_scale: float = 100.0
    oracle_confidence_cap: float = 0.8
    oracle_min_confidence: float = 0.0
    oracle_rounds: int = 2
    scoring_concurrency: int = 4


class RuleConfig(BaseModel):
    """A pattern-to-category reconciliation rule."""

    id: str
    pattern: str
    target_category: str
    confidence: float = 0.9
    description: str = ""
    target_transaction_id: Optional[str] = None

    def to_rule(self) -> ReconciliationRule:
        return ReconciliationRule(
            id=self.id,
            pattern=self.pattern,
            target_category=self.target_category,
            confidence=self.confidence,
            description=self.description,
            target_transaction_id=self.target_transaction_id,
        )


class SessionConfig(BaseModel):
    """Session approval and dispute thresholds."""

    approval_tolerance: float = 0.01
    # Share of unmatched + partial records above which a completed session is disputed
    auto_dispute_ratio: float = 0.5


class OracleConfig(BaseModel):
    """Classification oracle connection settings."""

    provider: str = "none"  # none | openai
    model: str = "gpt-5"
    timeout_seconds: float = 10.0
    concurrency: int = 4
    categories: list[str] = Field(
        default_factory=lambda: [
            "bank_fees",
            "payment_processing",
            "interest_income",
            "office_supplies",
            "software",
            "travel",
            "meals",
            "payroll",
            "rent",
            "utilities",
            "sales_revenue",
            "other",
        ]
    )


class CategorizationConfig(BaseModel):
    """Categorization engine settings."""

    short_circuit_confidence: float = 0.9
    fallback_category: str = "other"
    apply_rules_first: bool = False


class RetentionPolicyConfig(BaseModel):
    """Retention policy for one audit event type."""

    retention_days: int
    compliance_required: list[str] = Field(default_factory=list)

    @field_validator("compliance_required")
    @classmethod
    def validate_frameworks(cls, v: list[str]) -> list[str]:
        """Reject framework names the audit trail cannot tag."""
        from .audit.events import ComplianceFramework

        return [ComplianceFramework(tag).value for tag in v]


class AuditConfig(BaseModel):
    """Audit trail settings."""

    sink: str = "memory"  # memory | jsonl
    path: str = "data/audit_log.jsonl"
    large_amount_threshold: float = 10000.0
    repeated_failure_threshold: int = 3
    default_retention_days: int = 2555
    retention_policies: dict[str, RetentionPolicyConfig] = Field(default_factory=dict)


class ExcelOutputConfig(BaseModel):
    """Configuration for Excel output."""

    filename_template: str = "reconciliation_report_{date}_{time}.xlsx"
    include_timestamp: bool = True


class SheetConfig(BaseModel):
    """Configuration for a report sheet."""

    enabled: bool = True
    name: str


class SheetsConfig(BaseModel):
    """Configuration for all report sheets."""

    summary: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Summary"))
    matches: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Matches"))
    needs_review: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Needs Review"))
    unmatched: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Unmatched"))
    audit_trail: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Audit Trail"))


class OutputConfig(BaseModel):
    """Configuration for output."""

    excel: ExcelOutputConfig = Field(default_factory=ExcelOutputConfig)
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation."""

    input: InputConfig = Field(default_factory=InputConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    rules: list[RuleConfig] = Field(default_factory=list)
    session: SessionConfig = Field(default_factory=SessionConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    categorization: CategorizationConfig = Field(default_factory=CategorizationConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None

    def reconciliation_rules(self) -> list[ReconciliationRule]:
        return [r.to_rule() for r in self.rules]


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return {
        "input": InputConfig().model_dump(),
        "matching": {
            "exact_amount_tolerance": 0.01,
            "exact_date_tolerance_days": 1,
            "exact_confidence": 0.95,
            "fuzzy_threshold": 0.70,
            "description_weight": 0.6,
            "amount_weight": 0.4,
            "amount_near_threshold": 1.0,
            "amount_proximity_scale": 100.0,
            "oracle_confidence_cap": 0.8,
            "oracle_min_confidence": 0.0,
            "oracle_rounds": 2,
            "scoring_concurrency": 4,
        },
        "rules": [
            {
                "id": "paypal_fees",
                "pattern": "paypal.*fee",
                "target_category": "bank_fees",
                "confidence": 0.95,
                "description": "PayPal transaction fees",
            },
            {
                "id": "stripe_payments",
                "pattern": "stripe.*payment",
                "target_category": "payment_processing",
                "confidence": 0.9,
                "description": "Stripe payment processing",
            },
            {
                "id": "bank_interest",
                "pattern": "interest.*earned|dividend",
                "target_category": "interest_income",
                "confidence": 0.95,
                "description": "Bank interest or dividends",
            },
        ],
        "session": {
            "approval_tolerance": 0.01,
            "auto_dispute_ratio": 0.5,
        },
        "oracle": {
            "provider": "none",
            "model": "gpt-5",
            "timeout_seconds": 10.0,
            "concurrency": 4,
            "categories": OracleConfig().categories,
        },
        "categorization": {
            "short_circuit_confidence": 0.9,
            "fallback_category": "other",
            "apply_rules_first": False,
        },
        "audit": {
            "sink": "memory",
            "path": "data/audit_log.jsonl",
            "large_amount_threshold": 10000.0,
            "repeated_failure_threshold": 3,
            "default_retention_days": 2555,
            "retention_policies": {
                # 7 years for financial events
                "statement_imported": {"retention_days": 2555, "compliance_required": ["soc2", "sox"]},
                "transaction_deleted": {"retention_days": 2555, "compliance_required": ["soc2", "sox"]},
                "reconciliation_session_created": {"retention_days": 2555, "compliance_required": ["soc2", "sox"]},
                "reconciliation_completed": {"retention_days": 2555, "compliance_required": ["soc2", "sox"]},
                "reconciliation_approved": {"retention_days": 2555, "compliance_required": ["soc2", "sox"]},
                "reconciliation_disputed": {"retention_days": 2555, "compliance_required": ["soc2", "sox"]},
                "reconciliation_reopened": {"retention_days": 2555, "compliance_required": ["soc2", "sox"]},
                "reconciliation_cancelled": {"retention_days": 2555, "compliance_required": ["soc2"]},
                "match_reviewed": {"retention_days": 2555, "compliance_required": ["soc2", "sox"]},
                # 10 years for security-relevant events
                "repeated_match_failures": {"retention_days": 3650, "compliance_required": ["soc2"]},
                # Shorter retention for model operations
                "ai_categorization": {"retention_days": 90, "compliance_required": []},
                "ai_feedback_processed": {"retention_days": 365, "compliance_required": ["soc2"]},
            },
        },
        "output": {
            "excel": {
                "filename_template": "reconciliation_report_{date}_{time}.xlsx",
                "include_timestamp": True,
            },
            "sheets": {
                "summary": {"enabled": True, "name": "Summary"},
                "matches": {"enabled": True, "name": "Matches"},
                "needs_review": {"enabled": True, "name": "Needs Review"},
                "unmatched": {"enabled": True, "name": "Unmatched"},
                "audit_trail": {"enabled": True, "name": "Audit Trail"},
            },
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    }


def load_config(config_path: Optional[Path] = None) -> ReconConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        ReconConfig object with loaded or default settings
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f) or {}

        # Deep merge user config into defaults; lists (rules) are replaced
        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    return ReconConfig(**config_dict)


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    config_dict = get_default_config()

    yaml_content = """# Bank Reconciliation & Categorization Engine Configuration
# Generated configuration file - customize as needed

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
