"""
Intent Classifier - keyword and slot evidence scoring

Responsibilities:
- Score every intent family (navigate, query, mutation sub-kinds) for an
  utterance plus its parsed slots
- Resolve query kind and navigation target alongside the score
- Return candidates sorted descending, or a single unsupported/0 candidate

Design principles:
- Additive evidence: each matched feature adds a fixed weight, the total
  is clamped to [0, 1] and rounded to 4 decimals
- Destructive intents need their own verb: no delete without "lösch..."
- Ties resolved by precedence mutation > query > navigate > unsupported
- Never raises: failures degrade to unsupported with score 0
"""

import logging
import re
from typing import Dict, List, Optional, Tuple, Union

from voiceplanner.config import PlannerConfig
from voiceplanner.contracts import (
    Candidate,
    Intent,
    IntentKind,
    MutationType,
    ParsedSlots,
    QueryKind,
    TargetView,
    Transcript,
    UNSUPPORTED,
)
from voiceplanner.utils.helpers import fold_text
from voiceplanner.utils.lexicon import (
    ANALYTICS_WORDS,
    DELETE_VERBS,
    ENTRY_OBJECTS,
    ENTRY_VERBS,
    INTAKE_VERBS,
    LIST_WORDS,
    NAVIGATION_VERBS,
    PAIN_KEYWORDS,
    QUESTION_WORDS,
    RATE_VERBS,
    TARGET_KEYWORDS,
    UPDATE_VERBS,
)
from voiceplanner.utils.noise_guard import bare_pain_value, is_noise

logger = logging.getLogger(__name__)


def _words(pattern: str) -> re.Pattern:
    return re.compile(rf"\b(?:{pattern})\b")


_PAIN = _words(PAIN_KEYWORDS)
_INTAKE = _words(INTAKE_VERBS)
_ENTRY = _words(ENTRY_VERBS)
_DELETE = _words(DELETE_VERBS)
_UPDATE = _words(UPDATE_VERBS)
_RATE = _words(RATE_VERBS)
_NAVIGATE = _words(NAVIGATION_VERBS)
_QUESTION = _words(QUESTION_WORDS)
_ANALYTICS = _words(ANALYTICS_WORDS)
_LIST = _words(LIST_WORDS)
_OBJECT = _words(ENTRY_OBJECTS)
_RECENCY = _words(r"zuletzt|das\s+letzte\s+mal|letztes\s+mal")
_TARGETS = tuple((target, _words(pattern)) for target, pattern in TARGET_KEYWORDS)

_AVERAGE = _words(r"durchschnitt\w*|schnitt")
_COUNT = _words(r"wie\s+oft|wie\s+viele|wieviele|wie\s+viel|wieviel|anzahl|zähl\w*")
_LAST_MED = _words(
    r"welche\w*\s+medikament\w*|was\s+(?:habe|hab)\s+ich\s+(?:zuletzt\s+)?(?:genommen|eingenommen)"
    r"|letzte\w*\s+medikament\w*"
)

# Lower value wins a tie on score
PRECEDENCE: Dict[IntentKind, int] = {
    IntentKind.MUTATION: 0,
    IntentKind.QUERY: 1,
    IntentKind.NAVIGATE: 2,
    IntentKind.UNSUPPORTED: 3,
}
MUTATION_PRECEDENCE: Dict[MutationType, int] = {
    MutationType.CREATE: 0,
    MutationType.UPDATE: 1,
    MutationType.RATE: 2,
    MutationType.DELETE: 3,
}

WEIGHTS: Dict[str, float] = {
    # mutation/create
    'create.pain_keyword': 0.25,
    'create.intake_verb': 0.25,
    'create.entry_verb': 0.3,
    'create.pain_slot': 0.3,
    'create.medication_slot': 0.2,
    'create.no_medication': 0.1,
    'create.explicit_time': 0.05,
    'create.tags': 0.15,
    # mutation/delete
    'delete.verb': 0.6,
    'delete.object': 0.2,
    'delete.reference': 0.1,
    # mutation/update
    'update.verb': 0.5,
    'update.object': 0.2,
    'update.new_value': 0.15,
    # mutation/rate
    'rate.verb': 0.45,
    'rate.rating_slot': 0.3,
    'rate.medication_slot': 0.15,
    'rate.reference': 0.05,
    # query
    'query.question_word': 0.35,
    'query.analytics': 0.3,
    'query.list': 0.3,
    'query.recency': 0.2,
    'query.range': 0.2,
    'query.ordinal_object': 0.2,
    'query.medication_slot': 0.1,
    'query.question_mark': 0.1,
    # navigate
    'navigate.verb': 0.45,
    'navigate.target': 0.4,
}

# A lone "7" reads as a pain level, but only weakly
BARE_PAIN_SCORE = 0.5


class _Evidence:
    """Accumulates weighted features for one intent."""

    def __init__(self):
        self.score = 0.0
        self.reasons: List[str] = []

    def add(self, feature: str, present) -> None:
        if present:
            self.score += WEIGHTS[feature]
            self.reasons.append(feature)

    def candidate(self, intent: Intent) -> Candidate:
        score = round(min(max(self.score, 0.0), 1.0), 4)
        return Candidate(intent=intent, score=score, reasons=tuple(self.reasons))


class IntentClassifier:
    """
    Rule-based intent scorer.

    Stateless: configuration only. classify() is deterministic.
    """

    def __init__(self, config: Optional[PlannerConfig] = None):
        """
        Initialize classifier.

        Args:
            config: Planner configuration (classification floor)
        """
        self.config = config or PlannerConfig()
        logger.info(f"Intent classifier initialized (floor={self.config.classification_floor})")

    # =========================================================================
    # Public API
    # =========================================================================

    def classify(self, transcript: Union[Transcript, str], slots: ParsedSlots) -> List[Candidate]:
        """
        Score candidate intents.

        Args:
            transcript: Transcript or raw text
            slots: Slots parsed from the same utterance

        Returns:
            Candidates sorted by descending score (ties by precedence).
            A single Candidate(unsupported, 0.0) when nothing clears the
            classification floor or the utterance is noise.
        """
        text = transcript.text if isinstance(transcript, Transcript) else transcript
        try:
            folded = fold_text(text if isinstance(text, str) else "")
            if is_noise(folded):
                logger.info("Utterance classified as noise")
                return [Candidate(UNSUPPORTED, 0.0, ("noise",))]
            scored = self._score_all(folded, slots)
        except Exception as e:
            logger.error(f"Classification failure, degrading to unsupported: {e}", exc_info=True)
            return [Candidate(UNSUPPORTED, 0.0, ("classifier_error",))]

        viable = [c for c in scored if c.score >= self.config.classification_floor]
        if not viable:
            logger.info("No intent cleared the classification floor")
            return [Candidate(UNSUPPORTED, 0.0, ("below_floor",))]

        viable.sort(key=self._sort_key)
        logger.debug(f"Candidates: {[(c.intent.key, c.score) for c in viable]}")
        return viable

    @staticmethod
    def _sort_key(candidate: Candidate) -> Tuple[float, int, int]:
        intent = candidate.intent
        sub = MUTATION_PRECEDENCE[intent.mutation_type] if intent.mutation_type else 0
        return (-candidate.score, PRECEDENCE[intent.kind], sub)

    # =========================================================================
    # Scoring
    # =========================================================================

    def _score_all(self, text: str, slots: ParsedSlots) -> List[Candidate]:
        bare = bare_pain_value(text)
        if bare is not None:
            intent = Intent(IntentKind.MUTATION, mutation_type=MutationType.CREATE)
            return [Candidate(intent, BARE_PAIN_SCORE, ("bare_pain_value",))]

        candidates = [
            self._score_create(text, slots),
            self._score_delete(text, slots),
            self._score_update(text, slots),
            self._score_rate(text, slots),
            self._score_query(text, slots),
            self._score_navigate(text),
        ]
        return [c for c in candidates if c is not None and c.score > 0]

    def _score_create(self, text: str, slots: ParsedSlots) -> Optional[Candidate]:
        evidence = _Evidence()
        evidence.add('create.pain_keyword', _PAIN.search(text))
        evidence.add('create.intake_verb', _INTAKE.search(text))
        evidence.add('create.entry_verb', _ENTRY.search(text))
        evidence.add('create.pain_slot', slots.pain_level is not None)
        evidence.add('create.medication_slot', bool(slots.medications))
        if not evidence.reasons:
            return None
        evidence.add('create.no_medication', slots.medications == ())
        evidence.add('create.explicit_time', slots.time_expression is not None)
        evidence.add('create.tags', bool(slots.tags))
        return evidence.candidate(Intent(IntentKind.MUTATION, mutation_type=MutationType.CREATE))

    def _score_delete(self, text: str, slots: ParsedSlots) -> Optional[Candidate]:
        if not _DELETE.search(text):
            return None
        evidence = _Evidence()
        evidence.add('delete.verb', True)
        evidence.add('delete.object', _OBJECT.search(text))
        evidence.add('delete.reference', slots.time_expression is not None or slots.ordinal is not None)
        return evidence.candidate(Intent(IntentKind.MUTATION, mutation_type=MutationType.DELETE))

    def _score_update(self, text: str, slots: ParsedSlots) -> Optional[Candidate]:
        if not _UPDATE.search(text):
            return None
        evidence = _Evidence()
        evidence.add('update.verb', True)
        evidence.add('update.object', _OBJECT.search(text))
        evidence.add('update.new_value', slots.pain_level is not None or bool(slots.medications))
        return evidence.candidate(Intent(IntentKind.MUTATION, mutation_type=MutationType.UPDATE))

    def _score_rate(self, text: str, slots: ParsedSlots) -> Optional[Candidate]:
        if not _RATE.search(text):
            return None
        evidence = _Evidence()
        evidence.add('rate.verb', True)
        evidence.add('rate.rating_slot', slots.rating is not None)
        evidence.add('rate.medication_slot', bool(slots.medications))
        evidence.add('rate.reference', slots.time_expression is not None or slots.ordinal is not None)
        return evidence.candidate(Intent(IntentKind.MUTATION, mutation_type=MutationType.RATE))

    def _score_query(self, text: str, slots: ParsedSlots) -> Optional[Candidate]:
        evidence = _Evidence()
        evidence.add('query.question_word', _QUESTION.search(text))
        evidence.add('query.analytics', _ANALYTICS.search(text))
        evidence.add('query.list', _LIST.search(text) and bool(slots.medications))
        if not evidence.reasons:
            return None
        evidence.add('query.recency', _RECENCY.search(text))
        evidence.add('query.range', slots.range_days is not None)
        evidence.add('query.ordinal_object', slots.ordinal is not None and _OBJECT.search(text))
        evidence.add('query.medication_slot', bool(slots.medications))
        evidence.add('query.question_mark', text.rstrip().endswith("?"))
        intent = Intent(IntentKind.QUERY, query_kind=self._query_kind(text, slots))
        return evidence.candidate(intent)

    def _score_navigate(self, text: str) -> Optional[Candidate]:
        target = self._target(text)
        if target is None:
            return None
        evidence = _Evidence()
        evidence.add('navigate.verb', _NAVIGATE.search(text))
        evidence.add('navigate.target', True)
        return evidence.candidate(Intent(IntentKind.NAVIGATE, target=target))

    # =========================================================================
    # Sub-kind resolution
    # =========================================================================

    @staticmethod
    def _query_kind(text: str, slots: ParsedSlots) -> QueryKind:
        has_medication = bool(slots.medications)
        if _AVERAGE.search(text):
            return QueryKind.AVG_PAIN_RANGE
        if _COUNT.search(text):
            return QueryKind.COUNT_MED_RANGE if has_medication else QueryKind.COUNT_MIGRAINE_RANGE
        if _LAST_MED.search(text):
            return QueryKind.LAST_INTAKE_MED
        if has_medication and _LIST.search(text):
            return QueryKind.LIST_ENTRIES_WITH_MED
        if has_medication:
            return QueryKind.LAST_ENTRY_WITH_MED
        return QueryKind.LAST_ENTRY

    @staticmethod
    def _target(text: str) -> Optional[TargetView]:
        for target, pattern in _TARGETS:
            if pattern.search(text):
                return target
        return None
