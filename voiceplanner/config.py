"""
Planner configuration.

All tunable thresholds live here so planner behaviour is fully
reproducible from a transcript plus one PlannerConfig.

Design principles:
- Frozen dataclass with defaults matching the shipped planner_config.json
- Fail fast: unknown keys and out-of-range values raise ValueError
"""

import json
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict
from zoneinfo import ZoneInfo

from voiceplanner.contracts import MutationType, RiskLevel

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_CONFIG_PATH = DATA_DIR / "planner_config.json"


def _default_risk_tiers() -> Dict[str, str]:
    return {
        MutationType.CREATE.value: RiskLevel.LOW.value,
        MutationType.UPDATE.value: RiskLevel.MEDIUM.value,
        MutationType.RATE.value: RiskLevel.MEDIUM.value,
        MutationType.DELETE.value: RiskLevel.HIGH.value,
    }


@dataclass(frozen=True)
class PlannerConfig:
    """
    Tunable planner constants.

    Attributes:
        classification_floor: Minimum score for any intent to be considered
        disambiguation_margin: Top-two gap below which the user is asked
        disambiguation_ceiling: Top score at/above which no one is asked
        confirmation_threshold: Plans below this confidence get confirmed
        slot_retry_limit: Failed answers per slot before giving up
        slot_filled_confidence: Confidence after all slots were supplied
        user_choice_confidence: Confidence after an explicit disambiguation pick
        medication_match_threshold: difflib ratio needed for a fuzzy match
        default_query_range_days: Range for range queries without a range
        risk_tiers: mutation type -> risk level
        timezone: IANA zone used by the default clock
    """
    classification_floor: float = 0.35
    disambiguation_margin: float = 0.15
    disambiguation_ceiling: float = 0.9
    confirmation_threshold: float = 0.75
    slot_retry_limit: int = 3
    slot_filled_confidence: float = 0.9
    user_choice_confidence: float = 0.9
    medication_match_threshold: float = 0.82
    default_query_range_days: int = 30
    risk_tiers: Dict[str, str] = field(default_factory=_default_risk_tiers)
    timezone: str = "Europe/Berlin"

    def __post_init__(self):
        for name in ("classification_floor", "disambiguation_margin", "disambiguation_ceiling",
                     "confirmation_threshold", "slot_filled_confidence",
                     "user_choice_confidence", "medication_match_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

        if self.slot_retry_limit < 1:
            raise ValueError(f"slot_retry_limit must be >= 1, got {self.slot_retry_limit}")
        if self.default_query_range_days < 1:
            raise ValueError(
                f"default_query_range_days must be >= 1, got {self.default_query_range_days}"
            )

        valid_types = {m.value for m in MutationType}
        valid_levels = {r.value for r in RiskLevel}
        if set(self.risk_tiers) != valid_types:
            raise ValueError(
                f"risk_tiers must cover exactly {sorted(valid_types)}, got {sorted(self.risk_tiers)}"
            )
        for mutation_type, level in self.risk_tiers.items():
            if level not in valid_levels:
                raise ValueError(f"Invalid risk level '{level}' for {mutation_type}")

    def risk_for(self, mutation_type: MutationType) -> RiskLevel:
        return RiskLevel(self.risk_tiers[mutation_type.value])

    def make_clock(self) -> Callable[[], datetime]:
        """Clock returning the current time in the configured zone."""
        tz = ZoneInfo(self.timezone)
        return lambda: datetime.now(tz)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlannerConfig":
        """
        Build a config from a plain dict of overrides.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def from_json(cls, path: str | Path = DEFAULT_CONFIG_PATH) -> "PlannerConfig":
        """
        Load config overrides from a JSON file.

        Args:
            path: Path to a JSON object of overrides

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: On unknown keys or invalid values
        """
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Planner config not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Planner config must be a JSON object: {path}")

        config = cls.from_dict(data)
        logger.info(f"Planner config loaded from {config_path.name}")
        return config
