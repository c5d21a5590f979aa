"""Classification oracle client."""

from ..utils.exceptions import ConfigurationError
from .base import (
    Classification,
    ClassificationOracle,
    FeedbackCorrection,
    MatchCandidate,
    NullOracle,
)
from .openai_oracle import OpenAIClassificationOracle
from .timeboxed import TimeboxedOracle


def build_oracle(config) -> ClassificationOracle:
    """
    Build the configured oracle wrapped in a hard timeout.

    Args:
        config: ReconConfig

    Returns:
        TimeboxedOracle around the configured provider
    """
    oracle_config = config.oracle
    if oracle_config.provider == "openai":
        inner: ClassificationOracle = OpenAIClassificationOracle(
            categories=oracle_config.categories, model=oracle_config.model
        )
    elif oracle_config.provider == "none":
        inner = NullOracle()
    else:
        raise ConfigurationError(f"Unknown oracle provider: {oracle_config.provider}")
    return TimeboxedOracle(
        inner,
        timeout_seconds=oracle_config.timeout_seconds,
        concurrency=oracle_config.concurrency,
    )


__all__ = [
    "Classification",
    "ClassificationOracle",
    "FeedbackCorrection",
    "MatchCandidate",
    "NullOracle",
    "OpenAIClassificationOracle",
    "TimeboxedOracle",
    "build_oracle",
]
