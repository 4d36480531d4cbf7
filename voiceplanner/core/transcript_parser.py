"""
Transcript Parser - deterministic slot extraction from German utterances

Responsibilities:
- Extract date/time, pain level, medications (+dose), rating, query range,
  entry ordinal, notes and tags from one transcript
- Answer single-slot follow-ups ("Wann war das?" -> "vor einer Stunde")

Design principles:
- Pure given the clock: same text + same reference time = same ParsedSlots
- Never raises: anything unexpected degrades to an empty ParsedSlots
- Extractors claim character spans; later extractors only see free text,
  so "Sumatriptan 50" is a dose and never a pain level of 50
- Order matters: time -> range -> ordinal -> medications -> rating -> pain

Span claiming:
    Every extractor works on the folded (lowercased) text and records the
    spans it consumed. Notes are what is left of the original-case text
    once consumed spans and intake boilerplate are removed.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Tuple, Union

from voiceplanner.contracts import (
    EntryType,
    MedicationMention,
    PAIN_CATEGORY_LEVELS,
    PainCategory,
    ParsedSlots,
    SlotName,
    Transcript,
)
from voiceplanner.core.medication_matcher import MedicationMatcher
from voiceplanner.utils.helpers import normalize_text
from voiceplanner.utils.lexicon import (
    COUNT_UNITS,
    DAY_OFFSETS,
    DAY_PART_ADVERBS,
    DAY_PART_HOURS,
    DOSE_UNITS,
    FILLER_WORDS,
    INDEFINITE_ONE,
    LAST_NIGHT_HOUR,
    NO_MEDICATION_ANSWERS,
    NO_MEDICATION_PHRASES,
    NOW_WORDS,
    NUMBER_TOKEN,
    ORDINAL_WORDS,
    PAIN_CATEGORY_PATTERNS,
    PAIN_KEYWORDS,
    PAIN_TRIGGERS,
    RANGE_UNITS_DAYS,
    RATE_VERBS,
    RATING_EXPRESSIONS,
    TABLET_DOSE_PATTERNS,
    TAG_CATEGORIES,
    TIME_UNITS_MINUTES,
    to_number,
)

logger = logging.getLogger(__name__)

_NUM = NUMBER_TOKEN
_ONE = INDEFINITE_ONE
_OPT_AT = r"(?:(?:um|gegen|ab)\s+)?"

# --- time ---------------------------------------------------------------------
_RELATIVE = re.compile(
    rf"\bvor\s+(?P<n>{_NUM}|{_ONE})\s+(?:(?P<frac>halben|viertel|dreiviertel)\s*)?"
    r"(?P<unit>minuten|minute|min|stunden|stunde|std|tagen|tag)\b"
)
_DAY = re.compile(
    r"\b(?P<day>vorgestern|gestern|heute)"
    r"(?:\s+(?:am\s+)?(?P<part>früh|morgen|vormittag|nachmittag|mittag|abend|nacht))?\b"
)
_LAST_NIGHT = re.compile(r"\bletzte\s+nacht\b")
_DAY_ADVERB = re.compile(r"\b(?:am\s+)?(?P<part>" + "|".join(DAY_PART_ADVERBS) + r")\b")
_CLOCK_PATTERNS = (
    ("hm", re.compile(rf"\b{_OPT_AT}(?P<h>\d{{1,2}})[:.](?P<m>\d{{2}})(?:\s*uhr)?\b")),
    ("uhr", re.compile(rf"\b{_OPT_AT}(?P<h>{_NUM})\s*uhr(?:\s+(?P<m>\d{{1,2}}))?\b")),
    ("halb", re.compile(rf"\b{_OPT_AT}halb\s+(?P<h>{_NUM})\b")),
    ("viertel_nach", re.compile(rf"\b{_OPT_AT}viertel\s+nach\s+(?P<h>{_NUM})\b")),
    ("viertel_vor", re.compile(rf"\b{_OPT_AT}viertel\s+vor\s+(?P<h>{_NUM})\b")),
    ("um", re.compile(r"\bum\s+(?P<h>\d{1,2})\b(?!\s*(?:mg|milligramm|von|/|%))")),
)
_NOW = re.compile(r"\b(?:" + "|".join(NOW_WORDS) + r")\b")
_FRACTIONS = {"halben": 0.5, "viertel": 0.25, "dreiviertel": 0.75}

# --- query range / ordinal -------------------------------------------------------
_RANGE_UNIT = "|".join(sorted(RANGE_UNITS_DAYS, key=len, reverse=True))
_RANGE_PATTERNS = (
    re.compile(
        rf"\b(?:in\s+den\s+|in\s+der\s+|im\s+)?(?:letzte|letzten|letzter|letztes|vergangene|vergangenen)"
        rf"\s+(?:(?P<n>{_NUM})\s+)?(?P<unit>{_RANGE_UNIT})\b"
    ),
    re.compile(rf"\bseit\s+(?P<n>{_NUM}|{_ONE})\s+(?P<unit>{_RANGE_UNIT})\b"),
    re.compile(rf"\b(?:diese[nmrs]?|im)\s+(?P<unit>woche|monat|jahr)\b"),
)
_ORDINAL = re.compile(r"\b(?P<word>" + "|".join(sorted(ORDINAL_WORDS, key=len, reverse=True)) + r")\b")

# --- medications -----------------------------------------------------------------
_DOSE_AFTER = re.compile(rf"\s*(?P<dose>\d{{1,4}}(?:[.,]\d+)?)\s*(?P<unit>{DOSE_UNITS})?\b")
_DOSE_BEFORE = re.compile(rf"(?P<dose>\d{{1,4}}(?:[.,]\d+)?)\s*(?P<unit>{DOSE_UNITS})\s+$")
_NO_MEDICATION = re.compile(r"\b(?:" + "|".join(NO_MEDICATION_PHRASES) + r")\b")
_TABLET_AFTER = tuple(
    (re.compile(rf"[\s,]+(?:{pattern})\b"), quarters, label) for pattern, quarters, label in TABLET_DOSE_PATTERNS
)
_TABLET_BEFORE = tuple(
    (re.compile(rf"\b(?:{pattern})\s+$"), quarters, label) for pattern, quarters, label in TABLET_DOSE_PATTERNS
)
_COUNT_AFTER = re.compile(rf"[\s,]+(?P<n>{_NUM}|{_ONE})\s+(?P<unit>{COUNT_UNITS})\b")
_COUNT_BEFORE = re.compile(rf"\b(?P<n>{_NUM}|{_ONE})\s+(?:(?P<unit>{COUNT_UNITS})\s+)?$")

# --- pain / rating ---------------------------------------------------------------
_TRIGGER = "|".join(PAIN_TRIGGERS)
_SCALE = r"(?:\s*(?:von|/|aus)\s*(?:10|zehn)\b)"
_PAIN_PATTERNS = (
    re.compile(
        rf"\b(?:{_TRIGGER})\s*(?:(?:von|ist|war|bei|auf|liegt\s+bei|:|=)\s*)?"
        rf"(?P<n>{_NUM})\b{_SCALE}?"
    ),
    re.compile(rf"\b(?P<n>{_NUM}){_SCALE}"),
    re.compile(
        rf"\b(?P<n>{_NUM})\b(?!\s*(?:tabletten|tablette|mal|x\b|prozent|%|grad|kilo|kg|liter|jahre|jahren|{DOSE_UNITS}))"
    ),
)
_PAIN_CONTEXT = re.compile(rf"\b(?:{PAIN_KEYWORDS}|{_TRIGGER})\b")
# A number right after a pain word is a pain level, never a tablet count
_PAIN_LEAD = re.compile(rf"\b(?:{PAIN_KEYWORDS}|{_TRIGGER})\s*(?:(?:von|ist|war|bei|auf|:|=)\s*)?$")
_CATEGORY_PATTERNS = tuple(
    (re.compile(rf"\b(?:{pattern})\b"), category) for pattern, category in PAIN_CATEGORY_PATTERNS
)
_RATE_CONTEXT = re.compile(rf"\b(?:{RATE_VERBS})\b")
_RATING_NUMERIC = (
    re.compile(rf"\b(?:mit\s+)?(?P<n>{_NUM}){_SCALE}"),
    re.compile(rf"\bmit\s+(?:einer\s+)?(?P<n>{_NUM})\b"),
)
_RATING_WORDS = tuple(
    (re.compile(rf"\b{re.escape(expression)}\b"), value) for expression, value in RATING_EXPRESSIONS
)

# --- tags / notes ----------------------------------------------------------------
_HASHTAG = re.compile(r"#(?P<tag>[\wäöüß]+)")
_TAG_PATTERNS = tuple((name, re.compile(rf"\b(?:{pattern})\b")) for name, pattern in TAG_CATEGORIES.items())
_WORD = re.compile(r"[#\wäöüß]+(?:[.,:/-][\wäöüß]+)*")
_NOTE_BOILERPLATE = {
    "genommen", "eingenommen", "tablette", "tabletten", "mg", "milligramm", "uhr",
}


@dataclass(frozen=True)
class _When:
    date: Optional[date]
    time: Optional[time]
    is_now: bool
    expression: Optional[str]


class _Scan:
    """Folded text plus the spans extractors have consumed."""

    def __init__(self, text: str):
        self.text = text
        self.spans: List[Tuple[int, int]] = []

    def is_free(self, start: int, end: int) -> bool:
        return all(end <= s or start >= e for s, e in self.spans)

    def claim(self, start: int, end: int) -> None:
        self.spans.append((start, end))

    def first(self, pattern: re.Pattern, accept: Optional[Callable[[re.Match], bool]] = None):
        """First match over free text (optionally filtered) without claiming it."""
        for match in pattern.finditer(self.text):
            if not self.is_free(match.start(), match.end()):
                continue
            if accept is None or accept(match):
                return match
        return None

    def residual(self, source: str) -> str:
        """`source` (same length as text) with every claimed span blanked."""
        chars = list(source)
        for start, end in self.spans:
            for i in range(start, min(end, len(chars))):
                chars[i] = " "
        return "".join(chars)


class TranscriptParser:
    """
    Rule-based German slot extractor.

    Stateless apart from the injected medication matcher and clock.
    """

    def __init__(
        self,
        medication_matcher: Optional[MedicationMatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize parser.

        Args:
            medication_matcher: Vocabulary matcher (defaults to built-in list)
            clock: Returns the reference "now" for relative time expressions

        Raises:
            TypeError: If medication_matcher has no find_all() method
        """
        if medication_matcher is not None and not callable(getattr(medication_matcher, "find_all", None)):
            raise TypeError("medication_matcher must have callable find_all() method")

        self.matcher = medication_matcher or MedicationMatcher()
        self.clock = clock or datetime.now
        logger.info("Transcript parser initialized")

    # =========================================================================
    # Public API
    # =========================================================================

    def parse(
        self,
        transcript: Union[Transcript, str],
        reference: Optional[datetime] = None,
    ) -> ParsedSlots:
        """
        Extract all slots from an utterance.

        Args:
            transcript: Transcript or raw text
            reference: Reference time (defaults to the injected clock)

        Returns:
            ParsedSlots: Extracted slots. Empty/garbled input gives an
            all-empty ParsedSlots with is_now=True. Never raises.
        """
        text = transcript.text if isinstance(transcript, Transcript) else transcript
        try:
            display = normalize_text(text if isinstance(text, str) else "")
            if not display:
                return ParsedSlots()
            return self._parse(display, reference or self.clock())
        except Exception as e:
            logger.error(f"Parse failure, degrading to empty slots: {e}", exc_info=True)
            return ParsedSlots()

    def parse_slot(
        self,
        slot: SlotName,
        value: str,
        reference: Optional[datetime] = None,
    ) -> ParsedSlots:
        """
        Parse an answer to a single slot prompt.

        Only the asked slot is returned, so an answer never overwrites
        other collected data. Accepts answers that would be too weak in a
        full utterance ("stark" for pain, "keine" for medications).

        Args:
            slot: Slot that was asked for
            value: User answer (free text or quick-reply value)
            reference: Reference time (defaults to the injected clock)

        Returns:
            ParsedSlots: Carrying at most the asked slot
        """
        full = self.parse(value, reference)
        folded = normalize_text(value).lower() if isinstance(value, str) else ""

        if slot is SlotName.TIME:
            if full.time_expression is None:
                return ParsedSlots()
            return ParsedSlots(
                date=full.date,
                time=full.time,
                is_now=full.is_now,
                time_expression=full.time_expression,
            )

        if slot is SlotName.PAIN:
            if full.pain_level is not None:
                return ParsedSlots(pain_level=full.pain_level, pain_category=full.pain_category)
            for pattern, category in _CATEGORY_PATTERNS:
                if pattern.search(folded):
                    return ParsedSlots(
                        pain_level=PAIN_CATEGORY_LEVELS[category],
                        pain_category=category,
                    )
            if re.match(r"(?:keine|gar\s+keine|schmerzfrei)\b", folded):
                return ParsedSlots(pain_level=0)
            return ParsedSlots()

        if slot is SlotName.MEDICATIONS:
            if full.medications is not None:
                return ParsedSlots(medications=full.medications)
            words = _WORD.findall(folded)
            if words and words[0] in NO_MEDICATION_ANSWERS:
                return ParsedSlots(medications=())
            return ParsedSlots()

        raise ValueError(f"Unknown slot: {slot}")

    # =========================================================================
    # Extraction pipeline
    # =========================================================================

    def _parse(self, display: str, reference: datetime) -> ParsedSlots:
        folded = display.lower()
        if len(folded) != len(display):
            # Case folding changed offsets; notes fall back to folded text
            display = folded
        scan = _Scan(folded)

        tags = self._extract_tags(folded)
        when = self._extract_time(scan, reference)
        range_days = self._extract_range(scan)
        ordinal = self._extract_ordinal(scan)
        medications = self._extract_medications(scan)
        rating = self._extract_rating(scan)
        pain_level, pain_category = self._extract_pain(scan)

        if medications is None:
            match = scan.first(_NO_MEDICATION)
            if match:
                scan.claim(match.start(), match.end())
                medications = ()

        notes = self._extract_notes(scan, display)

        if pain_level is not None or medications:
            entry_type = EntryType.NEW_ENTRY
        elif notes or tags:
            entry_type = EntryType.CONTEXT_ENTRY
        else:
            entry_type = None

        slots = ParsedSlots(
            date=when.date,
            time=when.time,
            is_now=when.is_now,
            time_expression=when.expression,
            pain_level=pain_level,
            pain_category=pain_category,
            medications=medications,
            notes=notes,
            tags=tags,
            rating=rating,
            range_days=range_days,
            ordinal=ordinal,
            entry_type=entry_type,
        )
        logger.debug(f"Parsed slots: {slots.to_dict()}")
        return slots

    def _extract_tags(self, folded: str) -> Tuple[str, ...]:
        """Hashtags and category tags; reads text without claiming it."""
        tags: List[str] = []
        for match in _HASHTAG.finditer(folded):
            tag = match.group("tag")
            if tag not in tags:
                tags.append(tag)
        for name, pattern in _TAG_PATTERNS:
            if pattern.search(folded) and name not in tags:
                tags.append(name)
        return tuple(tags)

    def _extract_time(self, scan: _Scan, reference: datetime) -> _When:
        expressions: List[Tuple[int, str]] = []

        def take(match: re.Match) -> None:
            scan.claim(match.start(), match.end())
            expressions.append((match.start(), match.group(0).strip()))

        def expression() -> str:
            return " ".join(text for _, text in sorted(expressions))

        now_match = scan.first(_NOW)
        if now_match:
            take(now_match)

        # Relative offsets carry a full timestamp and win outright
        relative = scan.first(_RELATIVE)
        if relative:
            take(relative)
            amount = to_number(relative.group("n")) or 0
            factor = _FRACTIONS.get(relative.group("frac") or "", 1.0)
            minutes = amount * factor * TIME_UNITS_MINUTES[relative.group("unit")]
            moment = reference - timedelta(minutes=minutes)
            return _When(moment.date(), moment.time().replace(second=0, microsecond=0), False, expression())

        day_offset: Optional[int] = None
        part_hour: Optional[int] = None

        last_night = scan.first(_LAST_NIGHT)
        if last_night:
            take(last_night)
            day_offset = 1 if reference.hour < LAST_NIGHT_HOUR else 0
            part_hour = LAST_NIGHT_HOUR

        day = scan.first(_DAY)
        if day and day_offset is None:
            take(day)
            day_offset = DAY_OFFSETS[day.group("day")]
            if day.group("part"):
                part_hour = DAY_PART_HOURS[day.group("part")]

        adverb = scan.first(_DAY_ADVERB)
        if adverb and part_hour is None:
            take(adverb)
            part_hour = DAY_PART_ADVERBS[adverb.group("part")]

        clock = self._extract_clock(scan, take)

        if day_offset is None and part_hour is None and clock is None:
            now = reference.replace(second=0, microsecond=0)
            return _When(now.date(), now.time(), True, expression() if now_match else None)

        event_date = reference.date() - timedelta(days=day_offset or 0)
        if clock is not None:
            hour, minute = clock
            if part_hour is not None and part_hour >= 12 and hour < 12:
                hour += 12
        elif part_hour is not None:
            hour, minute = part_hour, 0
        else:
            hour, minute = reference.hour, reference.minute

        return _When(event_date, time(hour % 24, minute), False, expression())

    def _extract_clock(self, scan: _Scan, take: Callable[[re.Match], None]) -> Optional[Tuple[int, int]]:
        for style, pattern in _CLOCK_PATTERNS:
            match = scan.first(pattern, lambda m: _valid_clock(style, m))
            if match is None:
                continue
            take(match)
            hour = to_number(match.group("h"))
            minute = int(match.group("m")) if "m" in match.groupdict() and match.group("m") else 0
            if style == "halb":
                hour, minute = hour - 1, 30
            elif style == "viertel_nach":
                minute = 15
            elif style == "viertel_vor":
                hour, minute = hour - 1, 45
            return hour % 24, minute
        return None

    def _extract_range(self, scan: _Scan) -> Optional[int]:
        for pattern in _RANGE_PATTERNS:
            match = scan.first(pattern)
            if match is None:
                continue
            scan.claim(match.start(), match.end())
            amount = to_number(match.group("n")) if "n" in match.groupdict() and match.group("n") else 1
            return (amount or 1) * RANGE_UNITS_DAYS[match.group("unit")]
        return None

    def _extract_ordinal(self, scan: _Scan) -> Optional[int]:
        match = scan.first(_ORDINAL)
        if match is None:
            return None
        scan.claim(match.start(), match.end())
        return ORDINAL_WORDS[match.group("word")]

    def _extract_medications(self, scan: _Scan) -> Optional[Tuple[MedicationMention, ...]]:
        hits = self.matcher.find_all(scan.text, scan.spans)
        if not hits:
            return None

        for hit in hits:
            scan.claim(hit.start, hit.end)

        mentions = []
        for hit in hits:
            dose, quarters = self._attach_dose(scan, hit.start, hit.end)
            mentions.append(MedicationMention(
                name=hit.entry.name,
                dose=dose,
                medication_id=hit.entry.id,
                dose_quarters=quarters,
            ))
        return tuple(mentions)

    def _attach_dose(self, scan: _Scan, start: int, end: int) -> Tuple[Optional[str], Optional[int]]:
        """
        Claim the dose spoken next to one medication.

        After the name: tablet quantity, else amount with optional unit
        (optionally followed by a tablet quantity). Before the name:
        tablet quantity, amount with unit, or a bare count ("2 Ibuprofen").
        """
        quantity = self._tablet_quantity_after(scan, end)
        if quantity:
            return quantity

        after = _DOSE_AFTER.match(scan.text, end)
        if after and scan.is_free(after.start("dose"), after.end()):
            scan.claim(end, after.end())
            dose = _format_dose(after.group("dose"), after.group("unit"))
            quantity = self._tablet_quantity_after(scan, after.end())
            return dose, quantity[1] if quantity else None

        head = scan.text[:start]
        for pattern, quarters, label in _TABLET_BEFORE:
            match = pattern.search(head)
            if match and scan.is_free(match.start(), match.end()):
                scan.claim(match.start(), match.end())
                return label, quarters

        before = _DOSE_BEFORE.search(head)
        if before and scan.is_free(before.start(), before.end()):
            scan.claim(before.start(), before.end())
            return _format_dose(before.group("dose"), before.group("unit")), None

        count = _COUNT_BEFORE.search(head)
        if (
            count
            and scan.is_free(count.start(), count.end())
            and not _PAIN_LEAD.search(head[:count.start()])
        ):
            counted = _format_count(count.group("n"), count.group("unit"))
            if counted:
                scan.claim(count.start(), count.end())
                return counted

        return None, None

    def _tablet_quantity_after(self, scan: _Scan, end: int) -> Optional[Tuple[str, Optional[int]]]:
        for pattern, quarters, label in _TABLET_AFTER:
            match = pattern.match(scan.text, end)
            if match and scan.is_free(match.start(), match.end()):
                scan.claim(match.start(), match.end())
                return label, quarters
        count = _COUNT_AFTER.match(scan.text, end)
        if count and scan.is_free(count.start(), count.end()):
            counted = _format_count(count.group("n"), count.group("unit"))
            if counted:
                scan.claim(count.start(), count.end())
                return counted
        return None

    def _extract_rating(self, scan: _Scan) -> Optional[int]:
        if not _RATE_CONTEXT.search(scan.text):
            return None
        for pattern in _RATING_NUMERIC:
            match = scan.first(pattern, lambda m: _in_scale(m.group("n")))
            if match:
                scan.claim(match.start(), match.end())
                return to_number(match.group("n"))
        for pattern, value in _RATING_WORDS:
            match = scan.first(pattern)
            if match:
                scan.claim(match.start(), match.end())
                return value
        return None

    def _extract_pain(self, scan: _Scan) -> Tuple[Optional[int], Optional[PainCategory]]:
        # Numeric token takes precedence over category words
        for pattern in _PAIN_PATTERNS:
            match = scan.first(pattern, lambda m: _in_scale(m.group("n")))
            if match:
                scan.claim(match.start(), match.end())
                return to_number(match.group("n")), None

        if not _PAIN_CONTEXT.search(scan.text):
            return None, None
        for pattern, category in _CATEGORY_PATTERNS:
            match = scan.first(pattern)
            if match:
                scan.claim(match.start(), match.end())
                return PAIN_CATEGORY_LEVELS[category], category
        return None, None

    def _extract_notes(self, scan: _Scan, display: str) -> Optional[str]:
        residual = scan.residual(display)
        words = [w for w in _WORD.findall(residual) if w.lower() not in _NOTE_BOILERPLATE]
        if not words or all(w.lower() in FILLER_WORDS for w in words):
            return None
        return " ".join(words)


def _in_scale(token: str) -> bool:
    value = to_number(token)
    return value is not None and 0 <= value <= 10


def _valid_clock(style: str, match: re.Match) -> bool:
    hour = to_number(match.group("h"))
    if hour is None:
        return False
    minute_text = match.groupdict().get("m")
    if minute_text and int(minute_text) > 59:
        return False
    if style in ("halb", "viertel_vor"):
        return 1 <= hour <= 12
    return 0 <= hour <= 23


def _format_dose(amount: str, unit: Optional[str]) -> str:
    if unit is None:
        return amount
    return f"{amount} {'mg' if unit == 'milligramm' else unit}"


def _format_count(token: str, unit: Optional[str]) -> Optional[Tuple[str, Optional[int]]]:
    """Counted dose as (text, quarters); counts outside 1-10 are not doses."""
    count = to_number(token)
    if count is None or not 1 <= count <= 10:
        return None
    if unit is None or unit.startswith("tablette"):
        return (f"{count} Tablette" if count == 1 else f"{count} Tabletten"), count * 4
    if unit.startswith("kapsel"):
        return (f"{count} Kapsel" if count == 1 else f"{count} Kapseln"), None
    return f"{count} Stück", None
