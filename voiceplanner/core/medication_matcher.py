"""
Medication Matcher - vocabulary lookup for spoken medication names

Responsibilities:
- Hold the user's medication vocabulary ({id, name} entries)
- Find medication mentions in a folded transcript, with character offsets
- Tolerate recognition errors ("sumatriptahn") and short forms ("ibu")

Design principles:
- Stateless after construction (vocabulary is read-only)
- Exact substring first, abbreviations second, difflib fuzzy match last
- Ambiguous fuzzy matches are rejected rather than guessed
"""

import difflib
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from voiceplanner.utils.lexicon import (
    DEFAULT_MEDICATIONS,
    INTAKE_VERBS,
    MEDICATION_ABBREVIATIONS,
)

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-zäöüß][a-zäöüß\-]{2,}")
_INTAKE = re.compile(rf"\b(?:{INTAKE_VERBS})\b")

# Tokens shorter than this are never fuzzy-matched ("ich", "und", ...)
MIN_FUZZY_LENGTH = 5


@dataclass(frozen=True)
class MedicationEntry:
    """Vocabulary entry as supplied by the medication-vocabulary capability."""
    name: str
    id: Optional[str] = None


@dataclass(frozen=True)
class MedicationHit:
    """Vocabulary entry found at text[start:end]."""
    entry: MedicationEntry
    start: int
    end: int
    method: str


VocabularyItem = Union[MedicationEntry, dict, str]


class MedicationMatcher:
    """
    Case-insensitive substring and fuzzy matcher over a medication vocabulary.

    Falls back to a built-in list of common migraine medications when no
    vocabulary is supplied.
    """

    def __init__(
        self,
        vocabulary: Optional[Iterable[VocabularyItem]] = None,
        threshold: float = 0.82,
        context_threshold: float = 0.78,
        ambiguity_delta: float = 0.08,
    ):
        """
        Initialize matcher.

        Args:
            vocabulary: Entries as MedicationEntry, {'id', 'name'} dicts or names
            threshold: difflib ratio required for a fuzzy match
            context_threshold: Lower ratio used when an intake verb is present
            ambiguity_delta: Minimum lead of the best fuzzy match over the second

        Raises:
            ValueError: If an entry has no name or thresholds are out of range
        """
        for name, value in (("threshold", threshold), ("context_threshold", context_threshold)):
            if not 0.0 < value <= 1.0:
                raise ValueError(f"{name} must be within (0, 1], got {value}")

        items = list(vocabulary) if vocabulary is not None else list(DEFAULT_MEDICATIONS)
        self.entries: Tuple[MedicationEntry, ...] = tuple(self._coerce(item) for item in items)
        self.threshold = threshold
        self.context_threshold = context_threshold
        self.ambiguity_delta = ambiguity_delta

        # Longest names first so "Sumatriptan Nasenspray" beats "Sumatriptan"
        self._by_length = sorted(self.entries, key=lambda e: len(e.name), reverse=True)
        self._first_words = {}
        for entry in self.entries:
            self._first_words.setdefault(entry.name.lower().split()[0], entry)

        logger.info(f"Medication matcher initialized with {len(self.entries)} entries")

    @staticmethod
    def _coerce(item: VocabularyItem) -> MedicationEntry:
        if isinstance(item, MedicationEntry):
            entry = item
        elif isinstance(item, dict):
            entry = MedicationEntry(name=str(item.get("name", "")).strip(), id=item.get("id"))
        else:
            entry = MedicationEntry(name=str(item).strip())
        if not entry.name:
            raise ValueError(f"Medication vocabulary entry without name: {item!r}")
        return entry

    # =========================================================================
    # Public API
    # =========================================================================

    def find_all(self, text: str, taken: Sequence[Tuple[int, int]] = ()) -> List[MedicationHit]:
        """
        Find all medication mentions in folded text.

        Args:
            text: Lowercased transcript (see helpers.fold_text)
            taken: Spans already consumed by other extractors

        Returns:
            List of hits sorted by position, at most one per vocabulary entry
        """
        spans = list(taken)
        hits: List[MedicationHit] = []
        seen = set()

        def free(start: int, end: int) -> bool:
            return all(end <= s or start >= e for s, e in spans)

        def add(entry: MedicationEntry, start: int, end: int, method: str) -> None:
            spans.append((start, end))
            if entry.name in seen:
                return
            seen.add(entry.name)
            hits.append(MedicationHit(entry, start, end, method))

        # Pass 1: exact (case-insensitive) substring of the full name
        for entry in self._by_length:
            pattern = re.compile(rf"\b{re.escape(entry.name.lower())}\w*")
            for match in pattern.finditer(text):
                if free(match.start(), match.end()):
                    add(entry, match.start(), match.end(), "exact")

        # Pass 2 + 3: per token, abbreviation then fuzzy
        threshold = self.context_threshold if _INTAKE.search(text) else self.threshold
        for match in _TOKEN.finditer(text):
            if not free(match.start(), match.end()):
                continue
            token = match.group(0)
            entry = self._lookup_abbreviation(token)
            method = "abbreviation"
            if entry is None and len(token) >= MIN_FUZZY_LENGTH:
                entry = self.match_token(token, threshold)
                method = "fuzzy"
            if entry is not None:
                add(entry, match.start(), match.end(), method)

        hits.sort(key=lambda h: h.start)
        if hits:
            logger.debug(f"Medication hits: {[(h.entry.name, h.method) for h in hits]}")
        return hits

    def match_token(self, token: str, threshold: Optional[float] = None) -> Optional[MedicationEntry]:
        """
        Fuzzy-match a single token against vocabulary first words.

        Args:
            token: Lowercased token
            threshold: Override for the similarity cutoff

        Returns:
            MedicationEntry, or None when nothing is close enough or the two
            best matches are too close to tell apart
        """
        cutoff = self.threshold if threshold is None else threshold
        close = difflib.get_close_matches(token, list(self._first_words), n=2, cutoff=cutoff)
        if not close:
            return None
        if len(close) == 2:
            best = difflib.SequenceMatcher(None, token, close[0]).ratio()
            second = difflib.SequenceMatcher(None, token, close[1]).ratio()
            if best - second < self.ambiguity_delta:
                logger.debug(f"Ambiguous medication token '{token}': {close}")
                return None
        return self._first_words[close[0]]

    def _lookup_abbreviation(self, token: str) -> Optional[MedicationEntry]:
        canonical = MEDICATION_ABBREVIATIONS.get(token)
        if canonical is None:
            return None
        return self._first_words.get(canonical.lower())
