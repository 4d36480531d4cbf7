"""
Plan Builder & Confirmation Gate

Responsibilities:
- Turn (intent, slots, confidence) into exactly one Plan variant
- Derive mutation risk from the configured risk tiers
- Wrap risky or low-confidence plans in a ConfirmPlan with a spoken
  restatement of the pending action
- Produce the unsupported fallback with useful suggestions

Design principles:
- Stateless, deterministic
- Slot filling comes first: an intent with missing required slots never
  yields an executable plan
- confirm_type is DANGER exactly when risk is HIGH
"""

import logging
from typing import Optional, Sequence

from voiceplanner.config import PlannerConfig
from voiceplanner.contracts import (
    ConfirmType,
    Intent,
    IntentKind,
    MutationType,
    ParsedSlots,
    QueryKind,
    RiskLevel,
    TargetView,
)
from voiceplanner.core.slot_filling import SlotFillingEngine
from voiceplanner.plans import (
    ConfirmPlan,
    MutationPlan,
    NavigatePlan,
    NotSupportedPlan,
    Plan,
    QueryFilters,
    QueryPlan,
    Suggestion,
)
from voiceplanner.utils.helpers import format_when
from voiceplanner.utils.prompt_templates import (
    PromptTemplateID,
    QUERY_LABELS,
    TARGET_LABELS,
    render,
)

logger = logging.getLogger(__name__)

_RANGE_QUERIES = {
    QueryKind.COUNT_MED_RANGE,
    QueryKind.COUNT_MIGRAINE_RANGE,
    QueryKind.AVG_PAIN_RANGE,
}


class PlanBuilder:
    """
    Builds plans and applies the confirmation gate.
    """

    def __init__(
        self,
        config: Optional[PlannerConfig] = None,
        slot_filler: Optional[SlotFillingEngine] = None,
    ):
        """
        Initialize builder.

        Args:
            config: Planner configuration (risk tiers, confirmation threshold)
            slot_filler: Engine consulted for missing slots (None skips the check)
        """
        self.config = config or PlannerConfig()
        self.slot_filler = slot_filler
        logger.info("Plan builder initialized")

    # =========================================================================
    # Public API
    # =========================================================================

    def build(
        self,
        intent: Intent,
        slots: ParsedSlots,
        confidence: float,
        reasons: Sequence[str] = (),
        retry_counts=None,
    ) -> Plan:
        """
        Build the plan for an intent.

        Args:
            intent: Chosen intent
            slots: Collected slots
            confidence: Intent confidence (clamped to [0, 1])
            reasons: Classifier reasons (selects the unsupported message)
            retry_counts: Failed slot answers so far

        Returns:
            NotSupportedPlan for unsupported intents, SlotFillingPlan when
            required slots are missing, otherwise the action plan, wrapped
            in a ConfirmPlan when it requires confirmation
        """
        confidence = min(max(confidence, 0.0), 1.0)

        if intent.kind is IntentKind.UNSUPPORTED:
            return self.not_supported(reasons)

        if self.slot_filler is not None:
            slot_plan = self.slot_filler.build_plan(intent, slots, confidence, retry_counts)
            if slot_plan is not None:
                return slot_plan

        return self.gate(self.build_action(intent, slots, confidence))

    def build_action(self, intent: Intent, slots: ParsedSlots, confidence: float) -> Plan:
        """
        Build the bare navigate/query/mutation plan (no slot check, no gate).

        Raises:
            ValueError: For unsupported intents
        """
        if intent.kind is IntentKind.NAVIGATE:
            return NavigatePlan(
                target=intent.target,
                summary=f"{TARGET_LABELS[intent.target]} öffnen",
                confidence=confidence,
            )

        if intent.kind is IntentKind.QUERY:
            kind = intent.query_kind or QueryKind.LAST_ENTRY
            medication = slots.medications[0].name if slots.medications else None
            range_days = slots.range_days
            if range_days is None and kind in _RANGE_QUERIES:
                range_days = self.config.default_query_range_days
            filters = QueryFilters(medication=medication, range_days=range_days, ordinal=slots.ordinal)
            summary = QUERY_LABELS[kind].format(medication=medication or "Medikament", days=range_days)
            return QueryPlan(query_kind=kind, filters=filters, summary=summary, confidence=confidence)

        if intent.kind is IntentKind.MUTATION:
            return MutationPlan(
                mutation_type=intent.mutation_type,
                payload=slots,
                risk=self.config.risk_for(intent.mutation_type),
                summary=self._mutation_summary(intent.mutation_type, slots),
                confidence=confidence,
            )

        raise ValueError(f"Cannot build an action plan for {intent.key}")

    def requires_confirmation(self, plan: Plan) -> bool:
        """Medium/high-risk mutations and low-confidence actions need a confirm step."""
        if isinstance(plan, MutationPlan) and plan.risk in (RiskLevel.MEDIUM, RiskLevel.HIGH):
            return True
        if isinstance(plan, (MutationPlan, QueryPlan, NavigatePlan)):
            return plan.confidence < self.config.confirmation_threshold
        return False

    def gate(self, plan: Plan) -> Plan:
        """Wrap plan in a ConfirmPlan when it requires confirmation."""
        if not self.requires_confirmation(plan):
            return plan

        danger = isinstance(plan, MutationPlan) and plan.risk is RiskLevel.HIGH
        logger.info(f"Confirmation required for {plan.kind} plan (danger={danger})")
        return ConfirmPlan(
            pending=plan,
            question=self.confirmation_question(plan),
            confirm_type=ConfirmType.DANGER if danger else ConfirmType.NORMAL,
            confidence=plan.confidence,
        )

    def not_supported(self, reasons: Sequence[str] = ()) -> NotSupportedPlan:
        """Fallback for unsupported/noise utterances."""
        template = (
            PromptTemplateID.FAILURE_NOT_UNDERSTOOD if "noise" in reasons
            else PromptTemplateID.FAILURE_NOT_SUPPORTED
        )
        return NotSupportedPlan(
            reason=render(template),
            suggestions=(
                Suggestion(label="Hilfe anzeigen"),
                Suggestion(
                    label="Tagebuch öffnen",
                    plan=NavigatePlan(TargetView.DIARY, "Tagebuch öffnen", 1.0),
                ),
                Suggestion(
                    label="Auswertung öffnen",
                    plan=NavigatePlan(TargetView.ANALYSIS, "Auswertung öffnen", 1.0),
                ),
            ),
            confidence=0.0,
        )

    def confirmation_question(self, plan: Plan) -> str:
        """Natural-language restatement of the pending action."""
        if isinstance(plan, MutationPlan):
            slots = plan.payload
            if plan.mutation_type is MutationType.DELETE:
                return render(PromptTemplateID.CONFIRM_DELETE, target=_reference_phrase(slots))
            if plan.mutation_type is MutationType.UPDATE:
                return render(
                    PromptTemplateID.CONFIRM_UPDATE,
                    target=_reference_phrase(slots),
                    changes=_change_phrase(slots),
                )
            if plan.mutation_type is MutationType.RATE and slots.rating is not None:
                return render(
                    PromptTemplateID.CONFIRM_RATE,
                    medication=_medication_phrase(slots),
                    rating=slots.rating,
                )
            if plan.mutation_type is MutationType.CREATE:
                return render(PromptTemplateID.CONFIRM_CREATE, summary=plan.summary)
        return render(PromptTemplateID.CONFIRM_GENERIC, summary=plan.summary)

    # =========================================================================
    # Summaries
    # =========================================================================

    @staticmethod
    def _mutation_summary(mutation_type: MutationType, slots: ParsedSlots) -> str:
        if mutation_type is MutationType.CREATE:
            parts = []
            if slots.pain_level is not None:
                parts.append(f"Schmerzstärke {slots.pain_level}")
            if slots.medications is not None:
                parts.append(", ".join(slots.medication_labels) or "keine Medikamente")
            parts.append(
                format_when(None, None, slots.time_expression) if slots.is_now
                else format_when(slots.date, slots.time, slots.time_expression)
            )
            if slots.notes:
                parts.append(f"Notiz: {slots.notes}")
            return "Neuer Eintrag: " + ", ".join(parts)
        if mutation_type is MutationType.DELETE:
            return _capitalize(f"{_reference_phrase(slots)} löschen")
        if mutation_type is MutationType.UPDATE:
            return _capitalize(f"{_reference_phrase(slots)} ändern: {_change_phrase(slots)}")
        rating = f": {slots.rating} von 10" if slots.rating is not None else ""
        return f"Wirkung von {_medication_phrase(slots)} bewerten{rating}"


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


def _reference_phrase(slots: ParsedSlots) -> str:
    """Which entry a delete/update refers to."""
    if slots.ordinal == 2:
        return "den vorletzten Eintrag"
    if slots.referenced_date is not None and slots.ordinal is None:
        return f"den Eintrag vom {slots.referenced_date:%d.%m.%Y}"
    return "den letzten Eintrag"


def _change_phrase(slots: ParsedSlots) -> str:
    changes = []
    if slots.pain_level is not None:
        changes.append(f"Schmerzstärke {slots.pain_level}")
    if slots.medications:
        changes.append(", ".join(slots.medication_labels))
    return ", ".join(changes) or "ohne neue Angaben"


def _medication_phrase(slots: ParsedSlots) -> str:
    return slots.medication_labels[0] if slots.medications else "dem letzten Medikament"
