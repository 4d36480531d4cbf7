"""
Semantic contracts for the voice planner.

This module defines immutable data structures that serve as contracts
between the planner components (parser, classifier, slot filler, plan
builder, dialogue manager).

Design principles:
- Frozen dataclasses (immutable after creation)
- Absence is meaningful: None means "not said", never "error"
- No dependencies on other voiceplanner modules
- Only shape checks in __post_init__ (ranges, required sub-kinds)

Contents:
- Transcript: Captured utterance with locale and capture confidence
- MedicationMention: Medication matched in an utterance, optional dose
- ParsedSlots: Partial record extracted from one utterance
- Intent / Candidate: Classification output

Usage:
    from voiceplanner.contracts import Transcript, ParsedSlots, Intent, Candidate
"""

from dataclasses import dataclass, fields, replace
from datetime import date, time
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple


class IntentKind(str, Enum):
    """Top-level intent families."""
    NAVIGATE = "navigate"
    QUERY = "query"
    MUTATION = "mutation"
    UNSUPPORTED = "unsupported"


class MutationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RATE = "rate"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConfirmType(str, Enum):
    NORMAL = "normal"
    DANGER = "danger"


class SlotName(str, Enum):
    """Required fields the slot filler can ask for."""
    TIME = "time"
    PAIN = "pain"
    MEDICATIONS = "medications"


class PainCategory(str, Enum):
    LEICHT = "leicht"
    MITTEL = "mittel"
    STARK = "stark"
    SEHR_STARK = "sehr_stark"


PAIN_CATEGORY_LEVELS: Dict[PainCategory, int] = {
    PainCategory.LEICHT: 2,
    PainCategory.MITTEL: 5,
    PainCategory.STARK: 7,
    PainCategory.SEHR_STARK: 9,
}


class EntryType(str, Enum):
    """Pain/medication entry vs. free diary note."""
    NEW_ENTRY = "new_entry"
    CONTEXT_ENTRY = "context_entry"


class QueryKind(str, Enum):
    LAST_ENTRY = "last_entry"
    LAST_ENTRY_WITH_MED = "last_entry_with_med"
    LAST_INTAKE_MED = "last_intake_med"
    LIST_ENTRIES_WITH_MED = "list_entries_with_med"
    COUNT_MED_RANGE = "count_med_range"
    COUNT_MIGRAINE_RANGE = "count_migraine_range"
    AVG_PAIN_RANGE = "avg_pain_range"


class TargetView(str, Enum):
    """Screens the presentation layer can navigate to."""
    ANALYSIS = "analysis"
    DIARY = "diary"
    MEDICATIONS = "medications"
    REMINDERS = "reminders"
    SETTINGS = "settings"
    DOCTORS = "doctors"
    PROFILE = "profile"
    VOICE_NOTES = "voice_notes"
    DIARY_REPORT = "diary_report"
    MEDICATION_EFFECTS = "medication_effects"
    NEW_ENTRY = "new_entry"


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


@dataclass(frozen=True)
class Transcript:
    """
    Captured utterance as delivered by the speech-capture capability.

    Attributes:
        text: Raw recognised text (may be empty)
        locale: BCP-47 locale tag, fixed to German in practice
        confidence: Recogniser confidence 0.0-1.0
    """
    text: str
    locale: str = "de-DE"
    confidence: float = 1.0

    def __post_init__(self):
        _check_unit_interval("Transcript.confidence", self.confidence)


@dataclass(frozen=True)
class MedicationMention:
    """
    Medication matched against the vocabulary.

    Attributes:
        name: Canonical vocabulary name (e.g. 'Sumatriptan')
        dose: Dose as spoken (e.g. '50', '600 mg', 'halbe Tablette')
        medication_id: Vocabulary id when the vocabulary supplied one
        dose_quarters: Tablet quantity in quarter tablets (2 = half a tablet)
    """
    name: str
    dose: Optional[str] = None
    medication_id: Optional[str] = None
    dose_quarters: Optional[int] = None

    @property
    def label(self) -> str:
        """Display form, e.g. 'Sumatriptan 50'."""
        return f"{self.name} {self.dose}" if self.dose else self.name


@dataclass(frozen=True)
class ParsedSlots:
    """
    Partial record extracted from one utterance.

    Every field may be absent. Absence is information (the slot filler
    asks for it), never an error.

    Time handling:
        time_expression holds the matched temporal phrase. It is None when
        nothing temporal was said, in which case is_now is True and the
        parser fills date/time from its reference clock; such a defaulted
        "now" does not count as an answered time slot. An explicit "jetzt"
        sets time_expression and keeps is_now True.

    Medications:
        None means nobody mentioned medication; an empty tuple means the
        user explicitly said they took none.

    Attributes:
        date: Resolved calendar date of the event
        time: Resolved clock time of the event
        is_now: True when the event happens now (explicit or defaulted)
        time_expression: Temporal phrase as matched, None if defaulted
        pain_level: Pain 0-10 (from a number, or derived from category)
        pain_category: Category keyword when pain was given as a word
        medications: Matched medications (see above)
        notes: Residual free text after removing consumed phrases
        tags: Hashtags and category tags, first-seen order
        rating: Medication effect rating 0-10
        range_days: Query range in days ("letzte 30 Tage")
        ordinal: Entry reference, 1 = latest, 2 = the one before
        entry_type: Pain entry or free diary note
    """
    date: Optional[date] = None
    time: Optional[time] = None
    is_now: bool = True
    time_expression: Optional[str] = None
    pain_level: Optional[int] = None
    pain_category: Optional[PainCategory] = None
    medications: Optional[Tuple[MedicationMention, ...]] = None
    notes: Optional[str] = None
    tags: Tuple[str, ...] = ()
    rating: Optional[int] = None
    range_days: Optional[int] = None
    ordinal: Optional[int] = None
    entry_type: Optional[EntryType] = None

    def __post_init__(self):
        for name in ("pain_level", "rating"):
            value = getattr(self, name)
            if value is not None and not 0 <= value <= 10:
                raise ValueError(f"{name} must be within 0-10, got {value}")

    def has_slot(self, slot: SlotName) -> bool:
        """Whether a required slot counts as answered."""
        if slot is SlotName.TIME:
            return self.time_expression is not None
        if slot is SlotName.PAIN:
            return self.pain_level is not None
        if slot is SlotName.MEDICATIONS:
            return self.medications is not None
        raise ValueError(f"Unknown slot: {slot}")

    def present_slots(self) -> FrozenSet[SlotName]:
        return frozenset(slot for slot in SlotName if self.has_slot(slot))

    @property
    def referenced_date(self) -> Optional[date]:
        """Day the user named ("gestern"); None for an explicit or defaulted now."""
        if self.time_expression is None or self.is_now:
            return None
        return self.date

    @property
    def medication_labels(self) -> Tuple[str, ...]:
        return tuple(m.label for m in self.medications or ())

    def merge(self, other: "ParsedSlots") -> "ParsedSlots":
        """
        Overlay another extraction on top of this one.

        Fields set in `other` win. The four time fields move together so a
        later answer never mixes its date with an earlier clock time.
        Tags are unioned and notes concatenated.

        Args:
            other: Newer extraction (e.g. a slot-filling answer)

        Returns:
            ParsedSlots: New merged record
        """
        changes: Dict[str, Any] = {}
        if other.time_expression is not None:
            changes.update(
                date=other.date,
                time=other.time,
                is_now=other.is_now,
                time_expression=other.time_expression,
            )
        for name in ("pain_level", "pain_category", "medications", "rating",
                     "range_days", "ordinal", "entry_type"):
            value = getattr(other, name)
            if value is not None:
                changes[name] = value
        if other.pain_level is not None and other.pain_category is None:
            changes["pain_category"] = None
        if other.tags:
            changes["tags"] = self.tags + tuple(t for t in other.tags if t not in self.tags)
        if other.notes:
            changes["notes"] = f"{self.notes} {other.notes}" if self.notes else other.notes
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict (enums as values, dates as ISO strings)."""
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (date, time)):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            elif f.name == "medications" and value is not None:
                value = [
                    {"name": m.name, "dose": m.dose, "medication_id": m.medication_id,
                     "dose_quarters": m.dose_quarters}
                    for m in value
                ]
            elif f.name == "tags":
                value = list(value)
            result[f.name] = value
        return result


@dataclass(frozen=True)
class Intent:
    """
    Classified user intent.

    Attributes:
        kind: Intent family
        mutation_type: Required for MUTATION, forbidden otherwise
        query_kind: Query sub-kind for QUERY
        target: Navigation target for NAVIGATE
    """
    kind: IntentKind
    mutation_type: Optional[MutationType] = None
    query_kind: Optional[QueryKind] = None
    target: Optional[TargetView] = None

    def __post_init__(self):
        if self.kind is IntentKind.MUTATION and self.mutation_type is None:
            raise ValueError("Mutation intent requires a mutation_type")
        if self.kind is not IntentKind.MUTATION and self.mutation_type is not None:
            raise ValueError(f"{self.kind.value} intent cannot carry a mutation_type")
        if self.kind is IntentKind.NAVIGATE and self.target is None:
            raise ValueError("Navigate intent requires a target")

    @property
    def key(self) -> str:
        """Ruleset key, e.g. 'mutation/create' or 'query'."""
        if self.mutation_type is not None:
            return f"{self.kind.value}/{self.mutation_type.value}"
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "mutation_type": self.mutation_type.value if self.mutation_type else None,
            "query_kind": self.query_kind.value if self.query_kind else None,
            "target": self.target.value if self.target else None,
        }


UNSUPPORTED = Intent(IntentKind.UNSUPPORTED)


@dataclass(frozen=True)
class Candidate:
    """
    Scored intent hypothesis.

    Attributes:
        intent: Hypothesised intent
        score: Evidence score 0.0-1.0
        reasons: Features that contributed to the score (diagnostics only)
    """
    intent: Intent
    score: float
    reasons: Tuple[str, ...] = ()

    def __post_init__(self):
        _check_unit_interval("Candidate.score", self.score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent.to_dict(),
            "score": self.score,
            "reasons": list(self.reasons),
        }
