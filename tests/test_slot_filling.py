"""
Test Suite for the Slot-Filling Engine

Covers required/missing slot computation, prompts and quick replies,
answer application with retry counting, and ruleset validation.
"""

import unittest
import json
import tempfile
import os
import sys
from datetime import date, datetime, time

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from voiceplanner.config import PlannerConfig
from voiceplanner.contracts import (
    Intent,
    IntentKind,
    MutationType,
    ParsedSlots,
    SlotName,
    TargetView,
)
from voiceplanner.core.transcript_parser import TranscriptParser
from voiceplanner.core.slot_filling import SlotFillingEngine
from voiceplanner.plans import NavigatePlan


FIXED_NOW = datetime(2024, 3, 15, 14, 30)

CREATE = Intent(IntentKind.MUTATION, mutation_type=MutationType.CREATE)
RATE = Intent(IntentKind.MUTATION, mutation_type=MutationType.RATE)
DELETE = Intent(IntentKind.MUTATION, mutation_type=MutationType.DELETE)
QUERY = Intent(IntentKind.QUERY)


def make_engine(config=None):
    parser = TranscriptParser(clock=lambda: FIXED_NOW)
    return SlotFillingEngine(parser, config or PlannerConfig())


# =============================================================================
# PART 1: Required and missing slots
# =============================================================================

class TestRequiredSlots(unittest.TestCase):

    def setUp(self):
        self.engine = make_engine()

    def test_create_requires_all_in_priority_order(self):
        self.assertEqual(
            self.engine.required_slots(CREATE),
            (SlotName.TIME, SlotName.PAIN, SlotName.MEDICATIONS),
        )

    def test_other_intents(self):
        self.assertEqual(self.engine.required_slots(RATE), (SlotName.MEDICATIONS,))
        self.assertEqual(self.engine.required_slots(DELETE), ())
        self.assertEqual(self.engine.required_slots(QUERY), ())

    def test_missing_slots(self):
        slots = ParsedSlots(pain_level=7)
        self.assertEqual(
            self.engine.missing_slots(CREATE, slots),
            (SlotName.TIME, SlotName.MEDICATIONS),
        )

    def test_explicit_no_medication_counts_as_present(self):
        slots = ParsedSlots(pain_level=7, time_expression="jetzt", medications=())
        self.assertEqual(self.engine.missing_slots(CREATE, slots), ())


# =============================================================================
# PART 2: Plans
# =============================================================================

class TestBuildPlan(unittest.TestCase):

    def setUp(self):
        self.engine = make_engine()

    def test_plan_asks_first_missing_slot(self):
        plan = self.engine.build_plan(CREATE, ParsedSlots(pain_level=7), 0.55)

        self.assertEqual(plan.current_slot, SlotName.TIME)
        self.assertEqual(plan.prompt, "Wann war das?")
        self.assertEqual(plan.suggestions[0].label, "Jetzt")
        self.assertEqual(plan.suggestions[0].value, "jetzt")
        self.assertEqual(plan.partial.pain_level, 7)
        self.assertEqual(plan.intent, CREATE)
        self.assertEqual(plan.confidence, 0.55)

    def test_retry_prompt_after_failed_answer(self):
        plan = self.engine.build_plan(CREATE, ParsedSlots(pain_level=7), 0.55, {"time": 1})

        self.assertIn("vor einer Stunde", plan.prompt)

    def test_nothing_missing(self):
        slots = ParsedSlots(pain_level=7, time_expression="jetzt", medications=())
        self.assertIsNone(self.engine.build_plan(CREATE, slots, 0.9))

    def test_exhausted_plan_points_to_manual_entry(self):
        plan = self.engine.exhausted_plan(SlotName.TIME)

        self.assertIn("den Zeitpunkt", plan.reason)
        self.assertEqual(plan.confidence, 0.0)
        manual = plan.suggestions[0].plan
        self.assertIsInstance(manual, NavigatePlan)
        self.assertEqual(manual.target, TargetView.NEW_ENTRY)


# =============================================================================
# PART 3: Answers
# =============================================================================

class TestApplyAnswer(unittest.TestCase):

    def setUp(self):
        self.engine = make_engine()
        self.slots = ParsedSlots(pain_level=7)

    def test_accepted_answer_merges(self):
        answer = self.engine.apply_answer(CREATE, self.slots, "vor einer Stunde")

        self.assertTrue(answer.accepted)
        self.assertFalse(answer.exhausted)
        self.assertEqual(answer.slot, SlotName.TIME)
        self.assertEqual(answer.slots.date, date(2024, 3, 15))
        self.assertEqual(answer.slots.time, time(13, 30))
        self.assertEqual(answer.slots.pain_level, 7)
        self.assertEqual(answer.retry_counts, {})

    def test_rejected_answer_counts_retry(self):
        answer = self.engine.apply_answer(CREATE, self.slots, "blau", {"time": 1})

        self.assertFalse(answer.accepted)
        self.assertFalse(answer.exhausted)
        self.assertEqual(answer.retry_counts, {"time": 2})
        self.assertEqual(answer.slots, self.slots)

    def test_retry_ceiling(self):
        counts = {}
        for attempt in range(3):
            answer = self.engine.apply_answer(CREATE, self.slots, "blau", counts)
            counts = answer.retry_counts

        self.assertTrue(answer.exhausted)
        self.assertEqual(counts, {"time": 3})

    def test_retry_ceiling_follows_config(self):
        engine = make_engine(PlannerConfig(slot_retry_limit=1))
        answer = engine.apply_answer(CREATE, self.slots, "blau")

        self.assertTrue(answer.exhausted)

    def test_input_counts_not_mutated(self):
        counts = {"time": 1}
        self.engine.apply_answer(CREATE, self.slots, "blau", counts)

        self.assertEqual(counts, {"time": 1})

    def test_quick_reply_value_is_accepted(self):
        slots = ParsedSlots(pain_level=7, time_expression="jetzt")
        answer = self.engine.apply_answer(CREATE, slots, "Ibuprofen 600 mg")

        self.assertTrue(answer.accepted)
        self.assertEqual(answer.slots.medication_labels, ("Ibuprofen 600 mg",))

    def test_no_missing_slot_raises(self):
        slots = ParsedSlots(pain_level=7, time_expression="jetzt", medications=())
        with self.assertRaises(ValueError):
            self.engine.apply_answer(CREATE, slots, "jetzt")


# =============================================================================
# PART 4: Ruleset validation
# =============================================================================

class TestRulesetValidation(unittest.TestCase):

    def setUp(self):
        self.temp_file = tempfile.NamedTemporaryFile(
            mode='w', suffix='.json', delete=False, encoding='utf-8'
        )
        self.temp_file.close()
        self.parser = TranscriptParser(clock=lambda: FIXED_NOW)

    def tearDown(self):
        os.unlink(self.temp_file.name)

    def _write(self, ruleset):
        with open(self.temp_file.name, 'w', encoding='utf-8') as f:
            json.dump(ruleset, f)

    def test_unknown_slot_rejected(self):
        self._write({
            "slot_order": ["time", "mood"],
            "required_slots": {},
            "prompts": {"time": "Wann?", "mood": "Wie?"},
        })
        with self.assertRaises(ValueError) as ctx:
            SlotFillingEngine(self.parser, ruleset_path=self.temp_file.name)
        self.assertIn("mood", str(ctx.exception))

    def test_missing_prompt_rejected(self):
        self._write({
            "slot_order": ["time"],
            "required_slots": {"mutation/create": ["time", "pain"]},
            "prompts": {},
        })
        with self.assertRaises(ValueError):
            SlotFillingEngine(self.parser, ruleset_path=self.temp_file.name)

    def test_minimal_ruleset_accepted(self):
        self._write({
            "slot_order": ["time"],
            "required_slots": {"mutation/create": ["time"]},
            "prompts": {"time": "Wann?"},
        })
        engine = SlotFillingEngine(self.parser, ruleset_path=self.temp_file.name)
        self.assertEqual(engine.required_slots(CREATE), (SlotName.TIME,))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            SlotFillingEngine(self.parser, ruleset_path="does/not/exist.json")

    def test_parser_interface_checked(self):
        with self.assertRaises(TypeError):
            SlotFillingEngine(object())


if __name__ == '__main__':
    unittest.main()
