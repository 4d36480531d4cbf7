"""
Plan variants produced by the planner.

A Plan is exactly one of the frozen dataclasses below. The `Plan` union
is closed: every consumer dispatches with an isinstance chain ending in
`assert_never`, so a new variant is flagged by the type checker in every
place that has to handle it.

Design principles:
- Every variant carries confidence in [0, 1] (checked on construction)
- ConfirmPlan wraps exactly one non-confirm plan
- SlotFillingPlan.missing_slots is never empty
- DisambiguationPlan.options is exactly two candidates, descending
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple, Union, assert_never

from voiceplanner.contracts import (
    Candidate,
    ConfirmType,
    Intent,
    MutationType,
    ParsedSlots,
    QueryKind,
    RiskLevel,
    SlotName,
    TargetView,
)


def _check_confidence(plan_name: str, confidence: float) -> None:
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"{plan_name}.confidence must be within [0, 1], got {confidence}")


@dataclass(frozen=True)
class QueryFilters:
    """Filters of a diary query. All optional."""
    medication: Optional[str] = None
    range_days: Optional[int] = None
    ordinal: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "medication": self.medication,
            "range_days": self.range_days,
            "ordinal": self.ordinal,
        }


@dataclass(frozen=True)
class SlotSuggestion:
    """Quick reply for slot filling: label is shown, value is fed back as input."""
    label: str
    value: str


@dataclass(frozen=True)
class NavigatePlan:
    target: TargetView
    summary: str
    confidence: float
    kind: ClassVar[str] = "navigate"

    def __post_init__(self):
        _check_confidence("NavigatePlan", self.confidence)


@dataclass(frozen=True)
class QueryPlan:
    query_kind: QueryKind
    filters: QueryFilters
    summary: str
    confidence: float
    kind: ClassVar[str] = "query"

    def __post_init__(self):
        _check_confidence("QueryPlan", self.confidence)


@dataclass(frozen=True)
class MutationPlan:
    mutation_type: MutationType
    payload: ParsedSlots
    risk: RiskLevel
    summary: str
    confidence: float
    kind: ClassVar[str] = "mutation"

    def __post_init__(self):
        _check_confidence("MutationPlan", self.confidence)


@dataclass(frozen=True)
class ConfirmPlan:
    """
    Confirmation gate around a pending plan.

    confirm_type is DANGER exactly when the pending plan is a high-risk
    mutation; the plan builder is the only place that constructs these.
    """
    pending: "Plan"
    question: str
    confirm_type: ConfirmType
    confidence: float
    kind: ClassVar[str] = "confirm"

    def __post_init__(self):
        _check_confidence("ConfirmPlan", self.confidence)
        if isinstance(self.pending, ConfirmPlan):
            raise ValueError("ConfirmPlan cannot wrap another ConfirmPlan")


@dataclass(frozen=True)
class SlotFillingPlan:
    """
    Request for missing required fields.

    Attributes:
        missing_slots: Missing slots in priority order (never empty)
        prompt: Question for the first missing slot
        suggestions: Quick replies for the first missing slot
        partial: Everything collected so far
        intent: Intent the slots are being collected for
        confidence: Confidence of the underlying intent
    """
    missing_slots: Tuple[SlotName, ...]
    prompt: str
    suggestions: Tuple[SlotSuggestion, ...]
    partial: ParsedSlots
    intent: Intent
    confidence: float
    kind: ClassVar[str] = "slot_filling"

    def __post_init__(self):
        _check_confidence("SlotFillingPlan", self.confidence)
        if not self.missing_slots:
            raise ValueError("SlotFillingPlan requires at least one missing slot")

    @property
    def current_slot(self) -> SlotName:
        return self.missing_slots[0]


@dataclass(frozen=True)
class DisambiguationPlan:
    options: Tuple[Candidate, Candidate]
    transcript: str
    confidence: float
    kind: ClassVar[str] = "disambiguation"

    def __post_init__(self):
        _check_confidence("DisambiguationPlan", self.confidence)
        if len(self.options) != 2:
            raise ValueError(f"DisambiguationPlan needs exactly 2 options, got {len(self.options)}")
        if self.options[0].score < self.options[1].score:
            raise ValueError("DisambiguationPlan options must be sorted descending by score")


@dataclass(frozen=True)
class Suggestion:
    """Alternative offered by a NotSupportedPlan; plan is None for pure hints."""
    label: str
    plan: Optional["Plan"] = None


@dataclass(frozen=True)
class NotSupportedPlan:
    reason: str
    suggestions: Tuple[Suggestion, ...]
    confidence: float
    kind: ClassVar[str] = "not_supported"

    def __post_init__(self):
        _check_confidence("NotSupportedPlan", self.confidence)


Plan = Union[
    NavigatePlan,
    QueryPlan,
    MutationPlan,
    ConfirmPlan,
    SlotFillingPlan,
    DisambiguationPlan,
    NotSupportedPlan,
]


def unwrap(plan: Plan) -> Plan:
    """Return the pending plan of a ConfirmPlan, the plan itself otherwise."""
    return plan.pending if isinstance(plan, ConfirmPlan) else plan


def plan_to_dict(plan: Plan) -> Dict[str, Any]:
    """
    Serialize a plan to a JSON-safe dict tagged with its kind.

    Args:
        plan: Any Plan variant

    Returns:
        dict: {'kind': ..., 'confidence': ..., <variant fields>}
    """
    data: Dict[str, Any] = {"kind": plan.kind, "confidence": plan.confidence}

    if isinstance(plan, NavigatePlan):
        data.update(target=plan.target.value, summary=plan.summary)
    elif isinstance(plan, QueryPlan):
        data.update(
            query_kind=plan.query_kind.value,
            filters=plan.filters.to_dict(),
            summary=plan.summary,
        )
    elif isinstance(plan, MutationPlan):
        data.update(
            mutation_type=plan.mutation_type.value,
            payload=plan.payload.to_dict(),
            risk=plan.risk.value,
            summary=plan.summary,
        )
    elif isinstance(plan, ConfirmPlan):
        data.update(
            pending=plan_to_dict(plan.pending),
            question=plan.question,
            confirm_type=plan.confirm_type.value,
        )
    elif isinstance(plan, SlotFillingPlan):
        data.update(
            missing_slots=[s.value for s in plan.missing_slots],
            prompt=plan.prompt,
            suggestions=[{"label": s.label, "value": s.value} for s in plan.suggestions],
            partial=plan.partial.to_dict(),
            intent=plan.intent.to_dict(),
        )
    elif isinstance(plan, DisambiguationPlan):
        data.update(
            options=[c.to_dict() for c in plan.options],
            transcript=plan.transcript,
        )
    elif isinstance(plan, NotSupportedPlan):
        data.update(
            reason=plan.reason,
            suggestions=[
                {"label": s.label, "plan": plan_to_dict(s.plan) if s.plan else None}
                for s in plan.suggestions
            ],
        )
    else:
        assert_never(plan)

    return data
