"""
Unit tests for the Transcript Parser

Reference time is fixed at 15.03.2024 14:30 so relative expressions
resolve to known values.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import date, datetime, time

from voiceplanner.contracts import EntryType, PainCategory, ParsedSlots, SlotName, Transcript
from voiceplanner.core.medication_matcher import MedicationMatcher
from voiceplanner.core.transcript_parser import TranscriptParser


FIXED_NOW = datetime(2024, 3, 15, 14, 30)


def fixed_clock():
    return FIXED_NOW


def make_parser():
    return TranscriptParser(MedicationMatcher(), clock=fixed_clock)


# ========== Full Utterance Tests ==========

def test_pain_medication_and_now():
    """Pain level, medication with dose and an explicit 'jetzt'"""
    parser = make_parser()
    slots = parser.parse(Transcript("Ich habe Schmerzstufe 8 und Sumatriptan 50 genommen, jetzt"))

    assert slots.pain_level == 8
    assert slots.medication_labels == ("Sumatriptan 50",)
    assert slots.is_now
    assert slots.time_expression == "jetzt"
    assert slots.date == date(2024, 3, 15) and slots.time == time(14, 30)
    assert slots.notes is None
    assert slots.entry_type is EntryType.NEW_ENTRY
    print("✓ Pain, medication and 'jetzt' extracted")


def test_dose_is_never_pain_level():
    """A number right after a medication is its dose"""
    parser = make_parser()
    slots = parser.parse("Aspirin 5 genommen")

    assert slots.pain_level is None
    assert slots.medications[0].name == "Aspirin"
    assert slots.medications[0].dose == "5"
    print("✓ Dose claimed before pain extraction")


def test_dose_with_unit_and_pain():
    parser = make_parser()
    slots = parser.parse("Ibuprofen 600 mg und Stärke 6")

    assert slots.medication_labels == ("Ibuprofen 600 mg",)
    assert slots.pain_level == 6
    print("✓ Dose with unit and separate pain level")


def test_count_before_medication_is_not_pain():
    """'2 Ibuprofen' is a tablet count, not pain level 2"""
    parser = make_parser()
    slots = parser.parse("Ich habe 2 Ibuprofen genommen")

    assert slots.pain_level is None
    assert not slots.has_slot(SlotName.PAIN)
    assert slots.medications[0].name == "Ibuprofen"
    assert slots.medications[0].dose == "2 Tabletten"
    assert slots.medications[0].dose_quarters == 8
    print("✓ Count before medication claimed as dose")


def test_tablet_fraction_doses():
    parser = make_parser()

    slots = parser.parse("halbe Tablette Sumatriptan")
    assert slots.medication_labels == ("Sumatriptan halbe Tablette",)
    assert slots.medications[0].dose_quarters == 2
    assert slots.pain_level is None
    assert slots.notes is None

    slots = parser.parse("Ibuprofen anderthalb Tabletten")
    assert slots.medications[0].dose == "eineinhalb Tabletten"
    assert slots.medications[0].dose_quarters == 6

    slots = parser.parse("Sumatriptan 50 mg eine viertel Tablette")
    assert slots.medications[0].dose == "50 mg"
    assert slots.medications[0].dose_quarters == 1
    print("✓ Tablet fractions attached to medications")


def test_number_word_after_medication_is_not_pain():
    parser = make_parser()
    slots = parser.parse("Sumatriptan fünfzig")

    assert slots.medications[0].name == "Sumatriptan"
    assert slots.pain_level is None
    print("✓ 'Sumatriptan fünfzig' carries no pain level")


def test_numeric_pain_beats_category_word():
    parser = make_parser()

    slots = parser.parse("sehr starke Kopfschmerzen, Stärke 6")
    assert slots.pain_level == 6
    assert slots.pain_category is None

    slots = parser.parse("Schmerzstufe acht")
    assert slots.pain_level == 8
    print("✓ Numeric pain levels, digits and words")


def test_unspoken_time_defaults_to_reference():
    """No temporal phrase: date/time from the clock, time slot still open"""
    parser = make_parser()
    slots = parser.parse("Schmerzstufe 8")

    assert slots.date == date(2024, 3, 15)
    assert slots.time == time(14, 30)
    assert slots.is_now
    assert slots.time_expression is None
    assert not slots.has_slot(SlotName.TIME)
    print("✓ Defaulted now filled from reference clock")


def test_yesterday_keeps_current_clock_time():
    parser = make_parser()
    slots = parser.parse("Lösche den Eintrag von gestern")

    assert slots.date == date(2024, 3, 14)
    assert slots.time == time(14, 30)
    assert slots.time_expression == "gestern"
    assert not slots.is_now
    print("✓ 'gestern' resolved to 14.03.2024")


def test_day_part_shifts_clock_to_afternoon():
    parser = make_parser()
    slots = parser.parse("gestern abend um 8 Kopfschmerzen")

    assert slots.date == date(2024, 3, 14)
    assert slots.time == time(20, 0)
    assert slots.pain_level is None
    print("✓ 'gestern abend um 8' resolved to 20:00")


def test_relative_offset():
    parser = make_parser()
    slots = parser.parse("vor 2 Stunden Migräne mit Stärke 5")

    assert slots.date == date(2024, 3, 15)
    assert slots.time == time(12, 30)
    assert slots.pain_level == 5
    print("✓ 'vor 2 Stunden' resolved to 12:30")


def test_relative_minutes():
    parser = make_parser()

    slots = parser.parse("vor zehn Minuten")
    assert slots.time == time(14, 20)
    assert not slots.is_now
    assert slots.pain_level is None

    slots = parser.parse("vor 30 Minuten")
    assert slots.date == date(2024, 3, 15)
    assert slots.time == time(14, 0)
    assert slots.pain_level is None
    print("✓ Relative minutes resolved")


def test_half_hour_clock_expression():
    parser = make_parser()
    slots = parser.parse("heute nachmittag um halb drei")

    assert slots.date == date(2024, 3, 15)
    assert slots.time == time(14, 30)
    print("✓ 'heute nachmittag um halb drei' resolved to 14:30")


def test_clock_time_with_minutes():
    parser = make_parser()
    slots = parser.parse("um 17:30 Uhr Paracetamol genommen")

    assert slots.date == date(2024, 3, 15)
    assert slots.time == time(17, 30)
    assert slots.medication_labels == ("Paracetamol",)
    print("✓ '17:30 Uhr' resolved")


def test_pain_category_word():
    parser = make_parser()
    slots = parser.parse("starke Kopfschmerzen")

    assert slots.pain_level == 7
    assert slots.pain_category is PainCategory.STARK
    print("✓ 'starke Kopfschmerzen' mapped to 7")


def test_explicit_no_medication():
    parser = make_parser()
    slots = parser.parse("Stärke 4, keine Medikamente")

    assert slots.pain_level == 4
    assert slots.medications == ()
    print("✓ 'keine Medikamente' gives an empty medication list")


def test_fuzzy_and_abbreviated_medications():
    parser = make_parser()

    fuzzy = parser.parse("Ibuprofn genommen")
    assert fuzzy.medication_labels == ("Ibuprofen",)

    short = parser.parse("Ibu 400 genommen")
    assert short.medication_labels == ("Ibuprofen 400",)
    print("✓ Misspelled and abbreviated medications matched")


def test_query_range_and_ordinal():
    parser = make_parser()

    ranged = parser.parse("Wie oft habe ich Ibuprofen in den letzten 30 Tagen genommen?")
    assert ranged.range_days == 30
    assert ranged.ordinal is None
    assert ranged.medication_labels == ("Ibuprofen",)

    weeks = parser.parse("Durchschnitt der letzten 2 Wochen")
    assert weeks.range_days == 14

    ordinal = parser.parse("Lösche den vorletzten Eintrag")
    assert ordinal.ordinal == 2
    print("✓ Query range and entry ordinal extracted")


def test_rating_expressions():
    parser = make_parser()

    words = parser.parse("Sumatriptan hat gut geholfen")
    assert words.rating == 7
    assert words.pain_level is None

    numeric = parser.parse("Bewerte Ibuprofen mit 8")
    assert numeric.rating == 8
    assert numeric.pain_level is None
    print("✓ Ratings from words and numbers")


def test_tags_and_context_entry():
    parser = make_parser()
    slots = parser.parse("Viel Stress und schlecht geschlafen #wetter")

    assert slots.tags == ("wetter", "schlaf", "stress")
    assert slots.pain_level is None
    assert slots.medications is None
    assert slots.notes
    assert slots.entry_type is EntryType.CONTEXT_ENTRY
    print("✓ Hashtags and category tags collected")


def test_empty_and_garbled_input():
    """Empty input never raises and yields empty slots"""
    parser = make_parser()

    for text in ["", "   ", None]:
        slots = parser.parse(text)
        assert slots == ParsedSlots()
        assert slots.is_now
        assert slots.time_expression is None
    print("✓ Empty input gives empty slots")


def test_parse_is_deterministic():
    parser = make_parser()
    text = "Gestern um 17 Uhr Schmerzstärke 6 und Rizatriptan 10 mg"

    assert parser.parse(text) == parser.parse(text)
    print("✓ Same text, same slots")


# ========== Slot Answer Tests ==========

def test_parse_slot_time():
    parser = make_parser()

    answer = parser.parse_slot(SlotName.TIME, "vor einer Stunde")
    assert answer.date == date(2024, 3, 15)
    assert answer.time == time(13, 30)
    assert answer.has_slot(SlotName.TIME)

    nothing = parser.parse_slot(SlotName.TIME, "blau")
    assert not nothing.has_slot(SlotName.TIME)
    print("✓ Time answers parsed")


def test_parse_slot_only_returns_asked_slot():
    parser = make_parser()
    answer = parser.parse_slot(SlotName.MEDICATIONS, "Sumatriptan jetzt")

    assert answer.medication_labels == ("Sumatriptan",)
    assert answer.time_expression is None
    print("✓ Slot answer carries only the asked slot")


def test_parse_slot_accepts_short_answers():
    parser = make_parser()

    pain = parser.parse_slot(SlotName.PAIN, "stark")
    assert pain.pain_level == 7
    assert pain.pain_category is PainCategory.STARK

    none_taken = parser.parse_slot(SlotName.MEDICATIONS, "keine")
    assert none_taken.medications == ()
    assert none_taken.has_slot(SlotName.MEDICATIONS)
    print("✓ 'stark' and 'keine' accepted as slot answers")


if __name__ == "__main__":
    import pytest
    sys.exit(pytest.main([__file__, "-v"]))
