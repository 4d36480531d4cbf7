"""
Voice Planner - parse -> classify -> disambiguate -> fill slots -> build

Responsibilities:
- Run the whole interpretation pipeline for one transcript as one step
- Re-enter the plan builder for an explicitly chosen intent
- Wire default components from a PlannerConfig

Design principles:
- Thin orchestration (logic lives in the components)
- Parse and classify complete before any plan is built
- Never raises from plan()/plan_for_intent(): failures become
  NotSupportedPlans with the error recorded on the outcome
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from voiceplanner.config import PlannerConfig
from voiceplanner.contracts import Candidate, Intent, ParsedSlots, Transcript, UNSUPPORTED
from voiceplanner.core.disambiguator import Disambiguator
from voiceplanner.core.intent_classifier import IntentClassifier
from voiceplanner.core.medication_matcher import MedicationMatcher, VocabularyItem
from voiceplanner.core.plan_builder import PlanBuilder
from voiceplanner.core.slot_filling import SlotFillingEngine
from voiceplanner.core.transcript_parser import TranscriptParser
from voiceplanner.plans import DisambiguationPlan, Plan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanningOutcome:
    """
    Everything one planning step produced.

    Attributes:
        plan: Plan to present
        slots: Parsed (or collected) slots
        candidates: Classifier output (empty for intent re-entry)
        intent: Committed intent, None while disambiguating
        confidence: Confidence of the committed intent
        error: Internal error message when the step degraded
    """
    plan: Plan
    slots: ParsedSlots
    candidates: Tuple[Candidate, ...] = ()
    intent: Optional[Intent] = None
    confidence: float = 0.0
    error: Optional[str] = None
    reasons: Tuple[str, ...] = field(default=())


class VoicePlanner:
    """
    Stateless facade over the planner components.
    """

    def __init__(
        self,
        parser: TranscriptParser,
        classifier: IntentClassifier,
        disambiguator: Disambiguator,
        slot_filler: SlotFillingEngine,
        builder: PlanBuilder,
    ):
        """
        Initialize planner with component instances.

        Raises:
            TypeError: If any component is missing its entry point
        """
        self._validate_components(parser, classifier, disambiguator, slot_filler, builder)

        self.parser = parser
        self.classifier = classifier
        self.disambiguator = disambiguator
        self.slot_filler = slot_filler
        self.builder = builder

        logger.info("Voice planner initialized")

    @staticmethod
    def _validate_components(parser, classifier, disambiguator, slot_filler, builder):
        """Validate component interfaces"""
        checks = (
            (parser, "parse", "parser"),
            (classifier, "classify", "classifier"),
            (disambiguator, "resolve", "disambiguator"),
            (slot_filler, "apply_answer", "slot_filler"),
            (builder, "build", "builder"),
        )
        for component, method, name in checks:
            if not callable(getattr(component, method, None)):
                raise TypeError(f"{name} must have callable {method}() method")

    # =========================================================================
    # Public API
    # =========================================================================

    def plan(self, transcript: Transcript) -> PlanningOutcome:
        """
        Interpret one transcript.

        Args:
            transcript: Captured utterance

        Returns:
            PlanningOutcome with a DisambiguationPlan, SlotFillingPlan,
            NotSupportedPlan or (possibly confirm-wrapped) action plan
        """
        slots = self.parser.parse(transcript)
        try:
            candidates = self.classifier.classify(transcript, slots)
            resolved = self.disambiguator.resolve(candidates, transcript.text)
        except Exception as e:
            logger.error(f"Planning failed, falling back to unsupported: {e}", exc_info=True)
            return PlanningOutcome(
                plan=self.builder.not_supported(),
                slots=slots,
                intent=UNSUPPORTED,
                error=str(e),
            )

        if isinstance(resolved, DisambiguationPlan):
            return PlanningOutcome(plan=resolved, slots=slots, candidates=tuple(candidates))

        outcome = self.plan_for_intent(resolved.intent, slots, resolved.score, resolved.reasons)
        logger.info(
            f"Planned {outcome.plan.kind} for {resolved.intent.key} "
            f"(confidence={outcome.plan.confidence})"
        )
        return PlanningOutcome(
            plan=outcome.plan,
            slots=slots,
            candidates=tuple(candidates),
            intent=resolved.intent,
            confidence=resolved.score,
            error=outcome.error,
            reasons=resolved.reasons,
        )

    def plan_for_intent(
        self,
        intent: Intent,
        slots: ParsedSlots,
        confidence: float,
        reasons: Iterable[str] = (),
        retry_counts=None,
    ) -> PlanningOutcome:
        """
        Build a plan for a known intent (disambiguation pick, slot completion, edit).

        Bypasses classification entirely.
        """
        reasons = tuple(reasons)
        try:
            plan = self.builder.build(intent, slots, confidence, reasons, retry_counts)
        except Exception as e:
            logger.error(f"Plan building failed for {intent.key}: {e}", exc_info=True)
            return PlanningOutcome(
                plan=self.builder.not_supported(),
                slots=slots,
                intent=intent,
                confidence=confidence,
                error=str(e),
                reasons=reasons,
            )
        return PlanningOutcome(plan=plan, slots=slots, intent=intent, confidence=confidence, reasons=reasons)


def create_planner(
    config: Optional[PlannerConfig] = None,
    vocabulary: Optional[Iterable[VocabularyItem]] = None,
    clock: Optional[Callable[[], datetime]] = None,
    ruleset_path=None,
) -> VoicePlanner:
    """
    Wire a VoicePlanner with default components.

    Args:
        config: Planner configuration (defaults to PlannerConfig())
        vocabulary: Medication vocabulary (defaults to built-in list)
        clock: Reference clock (defaults to config timezone wall clock)
        ruleset_path: Slot ruleset override

    Returns:
        VoicePlanner
    """
    config = config or PlannerConfig()
    matcher = MedicationMatcher(vocabulary, threshold=config.medication_match_threshold)
    parser = TranscriptParser(matcher, clock or config.make_clock())
    slot_kwargs = {"ruleset_path": ruleset_path} if ruleset_path else {}
    slot_filler = SlotFillingEngine(parser, config, **slot_kwargs)
    return VoicePlanner(
        parser=parser,
        classifier=IntentClassifier(config),
        disambiguator=Disambiguator(config),
        slot_filler=slot_filler,
        builder=PlanBuilder(config, slot_filler),
    )


def candidate_summary(candidates: Iterable[Candidate]) -> List[dict]:
    """Debug view of candidates."""
    return [c.to_dict() for c in candidates]
