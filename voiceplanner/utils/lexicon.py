"""
German lexicon for the voice planner.

Responsibilities:
- Single source of truth for every keyword the parser and classifier match
- Number words, time phrases, pain/rating vocabulary, intent verbs,
  navigation targets, tag categories, filler words

Design principles:
- Pure data plus one number helper (no state)
- Simple lookup tables and regex fragments (lowercase, umlauts kept)
- Fragments are compiled by the modules that use them
- Easy to extend when new phrasing shows up in transcripts
"""

from typing import Dict, Optional, Tuple

from voiceplanner.contracts import PainCategory, TargetView

# =============================================================================
# Numbers
# =============================================================================

NUMBER_WORDS: Dict[str, int] = {
    'null': 0,
    'eins': 1,
    'zwei': 2,
    'drei': 3,
    'vier': 4,
    'fünf': 5,
    'sechs': 6,
    'sieben': 7,
    'acht': 8,
    'neun': 9,
    'zehn': 10,
    'elf': 11,
    'zwölf': 12,
}

# "ein/eine/einer" only count as 1 in unit phrases ("vor einer Stunde")
INDEFINITE_ONE = r"(?:ein|eine|einer|einem|einen)"

NUMBER_TOKEN = r"(?:\d{1,3}|" + "|".join(NUMBER_WORDS) + r")"


def to_number(token: str) -> Optional[int]:
    """
    Convert a digit string or German number word to int.

    Examples:
        >>> to_number('8')
        8
        >>> to_number('acht')
        8
        >>> to_number('einer')
        1
    """
    token = token.strip().lower()
    if token.isdigit():
        return int(token)
    if token in NUMBER_WORDS:
        return NUMBER_WORDS[token]
    if token in {'ein', 'eine', 'einer', 'einem', 'einen'}:
        return 1
    return None


# =============================================================================
# Time
# =============================================================================

NOW_WORDS = (
    'jetzt',
    'gerade eben',
    'gerade',
    'sofort',
    'soeben',
    'aktuell',
    'momentan',
)

DAY_OFFSETS: Dict[str, int] = {
    'heute': 0,
    'gestern': 1,
    'vorgestern': 2,
}

# Default clock hour for day parts ("gestern abend" -> 20:00)
DAY_PART_HOURS: Dict[str, int] = {
    'früh': 7,
    'morgen': 7,
    'vormittag': 10,
    'mittag': 12,
    'nachmittag': 15,
    'abend': 20,
    'nacht': 23,
}

# Standalone adverbs imply "today"
DAY_PART_ADVERBS: Dict[str, int] = {
    'morgens': 7,
    'vormittags': 10,
    'mittags': 12,
    'nachmittags': 15,
    'abends': 20,
    'nachts': 23,
}

LAST_NIGHT_HOUR = 3

TIME_UNITS_MINUTES: Dict[str, int] = {
    'minute': 1,
    'minuten': 1,
    'min': 1,
    'stunde': 60,
    'stunden': 60,
    'std': 60,
    'tag': 24 * 60,
    'tage': 24 * 60,
    'tagen': 24 * 60,
}

# Query ranges in days
RANGE_UNITS_DAYS: Dict[str, int] = {
    'tag': 1,
    'tage': 1,
    'tagen': 1,
    'woche': 7,
    'wochen': 7,
    'monat': 30,
    'monate': 30,
    'monaten': 30,
    'jahr': 365,
}

# =============================================================================
# Pain
# =============================================================================

# Ordered: speech-recognition variants before the bare nouns they contain
PAIN_TRIGGERS = (
    'schmerzlautstärke',
    'schmerzstärke',
    'schmerzstufe',
    'schmerzlevel',
    'schmerzwert',
    'schmerzskala',
    'kopfschmerzen',
    'schmerzen',
    'schmerz',
    'stärke',
    'stufe',
    'level',
)

# Ordered: "sehr stark" must win over "stark"
PAIN_CATEGORY_PATTERNS: Tuple[Tuple[str, PainCategory], ...] = (
    (r"(?:sehr|extrem|unerträglich)\s+stark\w*|unerträglich\w*|extrem\w*", PainCategory.SEHR_STARK),
    (r"stark\w*|heftig\w*", PainCategory.STARK),
    (r"mittel\w*|mäßig\w*|mässig\w*", PainCategory.MITTEL),
    (r"leicht\w*|schwach\w*|gering\w*", PainCategory.LEICHT),
)

PAIN_KEYWORDS = r"schmerz\w*|kopfschmerz\w*|kopfweh|migräne\w*|attacke\w*|anfall\w*|pochen\w*"

# =============================================================================
# Medications
# =============================================================================

DEFAULT_MEDICATIONS = (
    'Sumatriptan',
    'Ibuprofen',
    'Aspirin',
    'Paracetamol',
    'Rizatriptan',
    'Almotriptan',
    'Naratriptan',
    'Zolmitriptan',
    'Naproxen',
)

MEDICATION_ABBREVIATIONS: Dict[str, str] = {
    'suma': 'Sumatriptan',
    'ibu': 'Ibuprofen',
    'ass': 'Aspirin',
    'para': 'Paracetamol',
    'riza': 'Rizatriptan',
    'almo': 'Almotriptan',
    'nara': 'Naratriptan',
    'zolmi': 'Zolmitriptan',
}

DOSE_UNITS = r"(?:mg|milligramm|ml|mikrogramm|µg)"

# Tablet fractions: (pattern, quarters, display text). Longer phrases first.
TABLET_DOSE_PATTERNS: Tuple[Tuple[str, int, str], ...] = (
    (r"drei\s*viertel(?:\s+tablette)?", 3, "dreiviertel Tablette"),
    (r"(?:3/4|0[.,]75)(?:\s+tablette)?", 3, "dreiviertel Tablette"),
    (r"(?:eine\s+)?viertel(?:\s+tablette)?", 1, "Viertel Tablette"),
    (r"(?:1/4|0[.,]25)(?:\s+tablette)?", 1, "Viertel Tablette"),
    (r"(?:anderthalb|eineinhalb|1[.,]5)(?:\s+tabletten?)?", 6, "eineinhalb Tabletten"),
    (r"(?:eine\s+)?halbe(?:\s+tablette)?", 2, "halbe Tablette"),
    (r"(?:1/2|0[.,]5)(?:\s+tablette)?", 2, "halbe Tablette"),
    (r"(?:eine|1)\s+tablette", 4, "1 Tablette"),
    (r"ganze?\s+tablette", 4, "1 Tablette"),
    (r"(?:zwei|2)\s+tabletten", 8, "2 Tabletten"),
)

# Counted dose forms ("3 Tabletten Ibuprofen", "Sumatriptan 2 Kapseln")
COUNT_UNITS = r"(?:tabletten|tablette|kapseln|kapsel|stück)"

# Explicit "no medication" inside a full utterance
NO_MEDICATION_PHRASES = (
    r"keine\s+(?:medikamente|tabletten|medis|schmerzmittel)",
    r"nichts\s+(?:genommen|eingenommen)",
    r"ohne\s+(?:medikamente|tabletten|schmerzmittel)",
)

# Bare negation is only accepted as an answer to the medications prompt
NO_MEDICATION_ANSWERS = ('keine', 'keins', 'nichts', 'nein', 'none', 'ohne')

# =============================================================================
# Intent vocabulary
# =============================================================================

INTAKE_VERBS = r"genommen|eingenommen|nehme|nahm|eingeworfen|geschluckt|gespritzt"

ENTRY_VERBS = (
    r"eintragen|trag\w*\s+ein|notier\w*|dokumentier\w*|erfass\w*|speicher\w*|"
    r"neue[rn]?\s+eintrag|eintrag\s+anlegen"
)

DELETE_VERBS = r"l(?:ö|oe)sch\w*|entfern\w*|streich\w*"

UPDATE_VERBS = r"änder\w*|aender\w*|korrigier\w*|bearbeit\w*|aktualisier\w*|war\s+eigentlich"

RATE_VERBS = r"bewert\w*|geholfen|gewirkt|wirkte|wirkung|hilft|half"

NAVIGATION_VERBS = r"öffne\w*|zeig\w*|geh\w*\s+(?:zu|zur|zum|in|ins)|navigier\w*|wechsl\w*|wechsel\w*|bring\w*\s+mich"

QUESTION_WORDS = r"wann|wie\s+oft|wie\s+viele|wieviele|wie\s+viel|wieviel|welche\w*|was|wo"

ANALYTICS_WORDS = r"durchschnitt\w*|statistik\w*|anzahl|insgesamt|zähl\w*|schnitt"

LIST_WORDS = r"alle\s+einträge|einträge\s+mit|liste\w*|auflisten"

ENTRY_OBJECTS = r"eintr(?:a|ä)g\w*|attacke\w*|migräne\w*|anfall\w*|dokumentation"

ORDINAL_WORDS: Dict[str, int] = {
    'letzte': 1,
    'letzten': 1,
    'letzter': 1,
    'letztes': 1,
    'neueste': 1,
    'neuesten': 1,
    'vorletzte': 2,
    'vorletzten': 2,
    'vorletzter': 2,
    'vorletztes': 2,
}

# Ordered: multi-word expressions first
RATING_EXPRESSIONS: Tuple[Tuple[str, int], ...] = (
    ('überhaupt nicht', 0),
    ('gar nicht', 0),
    ('nicht', 0),
    ('kaum', 2),
    ('wenig', 3),
    ('etwas', 4),
    ('mittelmäßig', 5),
    ('mittel', 5),
    ('ziemlich gut', 7),
    ('sehr gut', 8),
    ('gut', 7),
    ('super', 9),
    ('perfekt', 10),
    ('komplett', 10),
    ('vollständig', 10),
)

# =============================================================================
# Navigation targets
# =============================================================================

# Ordered: specific phrases before the generic nouns they contain
TARGET_KEYWORDS: Tuple[Tuple[TargetView, str], ...] = (
    (TargetView.NEW_ENTRY, r"neue[rn]?\s+eintrag|eintrag\s+anlegen"),
    (TargetView.MEDICATION_EFFECTS, r"medikamentenwirkung\w*|wirkung\w*"),
    (TargetView.DIARY_REPORT, r"bericht\w*|report\w*|pdf|arztbericht\w*"),
    (TargetView.VOICE_NOTES, r"sprachnotiz\w*|notizen"),
    (TargetView.ANALYSIS, r"auswertung\w*|analyse\w*|statistik\w*|übersicht"),
    (TargetView.DIARY, r"tagebuch\w*|einträge|verlauf|kalender"),
    (TargetView.MEDICATIONS, r"medikamente\w*|medikamentenliste"),
    (TargetView.REMINDERS, r"erinnerung\w*"),
    (TargetView.SETTINGS, r"einstellung\w*"),
    (TargetView.DOCTORS, r"ärzt\w*|arzt\w*"),
    (TargetView.PROFILE, r"profil\w*|konto"),
)

# =============================================================================
# Tags
# =============================================================================

TAG_CATEGORIES: Dict[str, str] = {
    'schlaf': r"schlaf\w*|müde|übermüdet|schlecht\s+geschlafen|wenig\s+geschlafen",
    'stress': r"stress\w*|gestresst|hektik|druck\s+auf\s+der\s+arbeit",
    'ernährung': r"kaffee|koffein|alkohol|wein|bier|schokolade|käse|mahlzeit|hunger|nichts\s+gegessen",
    'wetter': r"wetter\w*|föhn|hitze|gewitter|luftdruck",
    'hormone': r"periode|menstruation|zyklus|eisprung",
    'aktivität': r"sport|joggen|training|fitness|radfahren|spaziergang",
    'stimmung': r"traurig|gereizt|angespannt|ängstlich|nervös|erschöpft",
    'bildschirm': r"bildschirm\w*|computer|handy|monitor",
    'flüssigkeit': r"zu\s+wenig\s+getrunken|durst|dehydriert",
}

# =============================================================================
# Fillers and noise
# =============================================================================

FILLER_WORDS = {
    'äh', 'ähm', 'öh', 'hm', 'hmm', 'mhm', 'also', 'ok', 'okay', 'ja', 'nein',
    'und', 'oder', 'ich', 'habe', 'hab', 'hatte', 'bin', 'ist', 'war', 'es',
    'die', 'der', 'das', 'den', 'dem', 'des', 'ein', 'eine', 'einen', 'einem',
    'mit', 'von', 'vom', 'um', 'am', 'an', 'auf', 'zu', 'für', 'mir', 'mich',
    'so', 'noch', 'bitte', 'danke', 'hallo', 'hey', 'hi', 'na', 'gut', 'mal',
    'genommen', 'eingenommen', 'tablette', 'tabletten', 'mg', 'milligramm',
    'uhr', 'gegen', 'dann', 'auch', 'schon', 'halt', 'eben', 'doch', 'wir',
    'hat', 'haben', 'sind', 'wurde', 'wird', 'sehr', 'ganz', 'mein', 'meine',
}

# Whole-utterance noise (greetings, hesitations, test phrases)
NOISE_WORDS = {
    'äh', 'ähm', 'öh', 'hm', 'hmm', 'mhm', 'ok', 'okay', 'ja', 'nein', 'also',
    'hallo', 'hey', 'hi', 'test', 'testing', 'danke', 'bitte', 'na',
    'so', 'gut', 'tschüss', 'moment',
}
