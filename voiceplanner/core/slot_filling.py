"""
Slot-Filling Engine - turn-by-turn elicitation of required fields

Responsibilities:
- Compute required - present = missing slots for an intent
- Build SlotFillingPlans (prompt + quick replies) for the first missing slot
- Apply an answer: scoped re-parse, merge, retry counting
- Give up after the per-slot retry ceiling with a manual-entry suggestion

Design principles:
- Stateless: collected slots and retry counts come in as parameters
- Deterministic: same input always produces same output
- Fail fast: validate slot ruleset on initialization
- Fixed priority order time -> pain -> medications (from the ruleset)
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from voiceplanner.config import DATA_DIR, PlannerConfig
from voiceplanner.contracts import Intent, ParsedSlots, SlotName, TargetView
from voiceplanner.core.transcript_parser import TranscriptParser
from voiceplanner.plans import (
    NavigatePlan,
    NotSupportedPlan,
    SlotFillingPlan,
    SlotSuggestion,
    Suggestion,
)
from voiceplanner.utils.prompt_templates import PromptTemplateID, SLOT_LABELS, render

logger = logging.getLogger(__name__)

DEFAULT_RULESET_PATH = DATA_DIR / "slot_ruleset.json"


@dataclass(frozen=True)
class SlotAnswer:
    """
    Outcome of applying one answer.

    Attributes:
        slot: Slot that was asked
        slots: Collected slots after merging (unchanged if not accepted)
        accepted: Whether the answer supplied the asked slot
        retry_counts: Updated failed-answer counts per slot name
        exhausted: True when the retry ceiling for this slot was reached
    """
    slot: SlotName
    slots: ParsedSlots
    accepted: bool
    retry_counts: Dict[str, int]
    exhausted: bool


class SlotFillingEngine:
    """
    Stateless slot elicitation driven by a JSON slot ruleset.
    """

    def __init__(
        self,
        parser: TranscriptParser,
        config: Optional[PlannerConfig] = None,
        ruleset_path: str | Path = DEFAULT_RULESET_PATH,
    ):
        """
        Initialize engine with slot ruleset.

        Args:
            parser: Parser used for scoped answer parsing
            config: Planner configuration (retry ceiling)
            ruleset_path: Path to slot_ruleset.json

        Raises:
            TypeError: If parser has no parse_slot() method
            FileNotFoundError: If ruleset doesn't exist
            ValueError: If ruleset missing required keys or has invalid references
        """
        if not callable(getattr(parser, "parse_slot", None)):
            raise TypeError("parser must have callable parse_slot() method")

        self.parser = parser
        self.config = config or PlannerConfig()
        self.ruleset_path = Path(ruleset_path)

        if not self.ruleset_path.exists():
            raise FileNotFoundError(f"Slot ruleset not found: {ruleset_path}")

        with open(self.ruleset_path, 'r', encoding='utf-8') as f:
            self.ruleset = json.load(f)

        self.slot_order = self.ruleset.get("slot_order", [])
        self.required = self.ruleset.get("required_slots", {})
        self.prompts = self.ruleset.get("prompts", {})
        self.retry_prompts = self.ruleset.get("retry_prompts", {})
        self.suggestions = self.ruleset.get("suggestions", {})

        self._validate_ruleset()

        self._order: Tuple[SlotName, ...] = tuple(SlotName(s) for s in self.slot_order)
        logger.info(f"Slot-filling engine initialized with {len(self.required)} intent rules")

    # =========================================================================
    # Public API
    # =========================================================================

    def required_slots(self, intent: Intent) -> Tuple[SlotName, ...]:
        """
        Required slots for an intent, in priority order.

        Intents without a rule require nothing.
        """
        names = set(self.required.get(intent.key, []))
        return tuple(slot for slot in self._order if slot.value in names)

    def missing_slots(self, intent: Intent, slots: ParsedSlots) -> Tuple[SlotName, ...]:
        """requiredSlots(intent) - presentSlots, in priority order."""
        present = slots.present_slots()
        return tuple(slot for slot in self.required_slots(intent) if slot not in present)

    def build_plan(
        self,
        intent: Intent,
        slots: ParsedSlots,
        confidence: float,
        retry_counts: Optional[Mapping[str, int]] = None,
    ) -> Optional[SlotFillingPlan]:
        """
        Build the elicitation plan for the first missing slot.

        Args:
            intent: Intent being completed
            slots: Slots collected so far
            confidence: Confidence of the intent
            retry_counts: Failed answers so far (switches to the retry prompt)

        Returns:
            SlotFillingPlan, or None when nothing is missing
        """
        missing = self.missing_slots(intent, slots)
        if not missing:
            return None

        current = missing[0]
        failed = (retry_counts or {}).get(current.value, 0)
        prompt = self.retry_prompts.get(current.value) if failed else None

        return SlotFillingPlan(
            missing_slots=missing,
            prompt=prompt or self.prompts[current.value],
            suggestions=tuple(
                SlotSuggestion(label=s["label"], value=s["value"])
                for s in self.suggestions.get(current.value, [])
            ),
            partial=slots,
            intent=intent,
            confidence=confidence,
        )

    def apply_answer(
        self,
        intent: Intent,
        slots: ParsedSlots,
        value: str,
        retry_counts: Optional[Mapping[str, int]] = None,
    ) -> SlotAnswer:
        """
        Apply a user answer to the first missing slot.

        Args:
            intent: Intent being completed
            slots: Slots collected so far
            value: Free-text answer or quick-reply value
            retry_counts: Failed answers so far

        Returns:
            SlotAnswer with merged slots and updated retry counts

        Raises:
            ValueError: If no slot is missing for this intent
        """
        missing = self.missing_slots(intent, slots)
        if not missing:
            raise ValueError(f"No missing slot to answer for {intent.key}")

        slot = missing[0]
        counts = dict(retry_counts or {})
        scoped = self.parser.parse_slot(slot, value)

        if scoped.has_slot(slot):
            logger.info(f"Slot '{slot.value}' filled")
            return SlotAnswer(slot, slots.merge(scoped), True, counts, False)

        counts[slot.value] = counts.get(slot.value, 0) + 1
        exhausted = counts[slot.value] >= self.config.slot_retry_limit
        if exhausted:
            logger.warning(f"Slot '{slot.value}' not filled after {counts[slot.value]} attempts")
        else:
            logger.info(f"Slot '{slot.value}' answer not understood (attempt {counts[slot.value]})")
        return SlotAnswer(slot, slots, False, counts, exhausted)

    def exhausted_plan(self, slot: SlotName) -> NotSupportedPlan:
        """NotSupportedPlan pointing the user at manual entry."""
        return NotSupportedPlan(
            reason=render(PromptTemplateID.FAILURE_SLOT_EXHAUSTED, slot=SLOT_LABELS[slot]),
            suggestions=(
                Suggestion(
                    label="Eintrag manuell anlegen",
                    plan=NavigatePlan(
                        target=TargetView.NEW_ENTRY,
                        summary="Neuen Eintrag öffnen",
                        confidence=1.0,
                    ),
                ),
                Suggestion(label="Abbrechen"),
            ),
            confidence=0.0,
        )

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate_ruleset(self):
        """
        Validate ruleset structure on initialization.

        Checks:
        - slot_order exists and names only known slots
        - required_slots only references slots in slot_order
        - Every slot in slot_order has a prompt
        - Every suggestion has 'label' and 'value'

        Raises:
            ValueError: If validation fails
        """
        errors = []
        known = {slot.value for slot in SlotName}

        if not self.slot_order:
            errors.append("Missing 'slot_order' in ruleset")
        for name in self.slot_order:
            if name not in known:
                errors.append(f"Unknown slot '{name}' in slot_order")
            if name not in self.prompts:
                errors.append(f"Slot '{name}' in slot_order has no prompt")

        for intent_key, names in self.required.items():
            for name in names:
                if name not in self.slot_order:
                    errors.append(f"Intent '{intent_key}' requires slot '{name}' not in slot_order")

        for name, options in self.suggestions.items():
            if name not in self.slot_order:
                errors.append(f"Suggestions for unknown slot '{name}'")
            for i, option in enumerate(options):
                if "label" not in option or "value" not in option:
                    errors.append(f"Suggestion {i} for slot '{name}' missing 'label' or 'value'")

        if errors:
            raise ValueError("Slot ruleset validation failed:\n" + "\n".join(errors))
