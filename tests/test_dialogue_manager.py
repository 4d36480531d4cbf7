"""
Unit tests for the Dialogue Manager (Functional Core)

Drives DialogueManager.handle() with commands against the real planner
(fixed clock) and checks states, transitions, plans and outputs.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime

from voiceplanner.commands import (
    CaptureCompleted,
    CaptureFailed,
    Cancel,
    Change,
    Confirm,
    CustomSlotInput,
    DialogueState,
    Save,
    SaveFailed,
    SaveSucceeded,
    SelectOption,
    StartCapture,
)
from voiceplanner.config import PlannerConfig
from voiceplanner.contracts import (
    Candidate,
    ConfirmType,
    Intent,
    IntentKind,
    MutationType,
    QueryKind,
    Transcript,
)
from voiceplanner.core.dialogue_manager import ALLOWED_TRANSITIONS, DialogueManager
from voiceplanner.core.planner import create_planner
from voiceplanner.plans import (
    ConfirmPlan,
    DisambiguationPlan,
    MutationPlan,
    NotSupportedPlan,
    QueryPlan,
    SlotFillingPlan,
)
from voiceplanner.results import IllegalCommand, TurnResult
from voiceplanner.utils.prompt_templates import PromptTemplateID, render


FIXED_NOW = datetime(2024, 3, 15, 14, 30)

S = DialogueState
CREATE = Intent(IntentKind.MUTATION, mutation_type=MutationType.CREATE)
LAST_ENTRY = Intent(IntentKind.QUERY, query_kind=QueryKind.LAST_ENTRY)

CREATE_TEXT = "Ich habe Schmerzstufe 8 und Sumatriptan 50 genommen, jetzt"
DELETE_TEXT = "Lösche den Eintrag von gestern"
UPDATE_TEXT = "Ändere den letzten Eintrag auf Schmerzstärke 5"


# ========================
# Mock Modules
# ========================

class MockClassifier:
    """Classifier returning fixed candidates"""

    def __init__(self, candidates):
        self.candidates = candidates

    def classify(self, transcript, slots):
        return list(self.candidates)


class BrokenPlanner:
    """Planner whose every call fails"""

    slot_filler = None

    def plan(self, transcript):
        raise RuntimeError("planner exploded")

    def plan_for_intent(self, intent, slots, confidence, reasons=(), retry_counts=None):
        raise RuntimeError("planner exploded")


def make_manager(config=None):
    config = config or PlannerConfig()
    return DialogueManager(create_planner(config, clock=lambda: FIXED_NOW), config)


def capture(manager, text, session=None):
    """StartCapture + CaptureCompleted, returns the second TurnResult"""
    session = session or manager.new_session("test0001")
    started = manager.handle(session, StartCapture())
    assert isinstance(started, TurnResult)
    return manager.handle(started.session, CaptureCompleted(Transcript(text)))


# ========== Capture Tests ==========

def test_start_capture_from_idle():
    manager = make_manager()
    result = manager.handle(manager.new_session("abc"), StartCapture())

    assert result.state is S.RECORDING
    assert result.transitions == ((S.IDLE, S.RECORDING),)
    assert result.system_output == render(PromptTemplateID.DIALOGUE_LISTENING)
    assert result.session.turn_count == 1
    print("✓ idle -> recording")


def test_complete_create_reaches_reviewing():
    manager = make_manager()
    result = capture(manager, CREATE_TEXT)

    assert result.state is S.REVIEWING
    assert result.transitions == ((S.RECORDING, S.PROCESSING), (S.PROCESSING, S.REVIEWING))
    assert isinstance(result.plan, MutationPlan)
    assert result.plan.confidence == 1.0
    assert "Schmerzstärke 8" in result.system_output
    assert result.debug["slots"]["pain_level"] == 8
    assert result.session.transcripts[0].text == CREATE_TEXT
    print("✓ Complete utterance lands in reviewing")


def test_delete_auto_advances_to_confirming():
    manager = make_manager()
    result = capture(manager, DELETE_TEXT)

    assert result.state is S.CONFIRMING
    assert result.transitions[-2:] == ((S.PROCESSING, S.REVIEWING), (S.REVIEWING, S.CONFIRMING))
    assert isinstance(result.plan, ConfirmPlan)
    assert result.plan.confirm_type is ConfirmType.DANGER
    assert result.system_output == result.plan.question
    print("✓ High-risk plan goes to confirming")


def test_noise_ends_in_reviewing_not_supported():
    manager = make_manager()
    result = capture(manager, "")

    assert result.state is S.REVIEWING
    assert isinstance(result.plan, NotSupportedPlan)
    assert result.system_output == render(PromptTemplateID.FAILURE_NOT_UNDERSTOOD)
    assert result.debug["error_kind"] == "classification_floor"
    print("✓ Empty transcript -> not supported")


def test_retry_capture_after_not_supported():
    manager = make_manager()
    failed = capture(manager, "äh ok")
    retry = manager.handle(failed.session, StartCapture())

    assert retry.state is S.RECORDING
    assert retry.session.session_id == failed.session.session_id
    assert retry.plan is None
    print("✓ New capture allowed after not-supported")


def test_capture_failed_returns_to_idle():
    manager = make_manager()
    started = manager.handle(manager.new_session(), StartCapture())
    result = manager.handle(started.session, CaptureFailed("kein Mikrofon", unavailable=True))

    assert result.state is S.IDLE
    assert result.transitions == ((S.RECORDING, S.IDLE),)
    assert "kein Mikrofon" in result.system_output
    assert result.debug["error_kind"] == "capability_unavailable"

    started = manager.handle(result.session, StartCapture())
    garbled = manager.handle(started.session, CaptureFailed("timeout"))
    assert garbled.debug["error_kind"] == "parse_failure"
    print("✓ Capture failures end in idle")


# ========== Slot Filling Tests ==========

def test_slot_filling_conversation():
    manager = make_manager()
    result = capture(manager, "Schmerzstärke 7")

    assert result.state is S.SLOT_FILLING
    assert result.system_output == "Wann war das?"
    assert result.plan.confidence == 0.55

    result = manager.handle(result.session, CustomSlotInput("vor einer Stunde"))
    assert result.state is S.SLOT_FILLING
    assert result.transitions == ((S.SLOT_FILLING, S.SLOT_FILLING),)
    assert result.system_output == "Welche Medikamente hast du genommen?"

    result = manager.handle(result.session, CustomSlotInput("Ibuprofen 400 mg"))
    assert result.state is S.REVIEWING
    assert result.transitions == ((S.SLOT_FILLING, S.REVIEWING),)
    assert isinstance(result.plan, MutationPlan)
    assert result.plan.confidence == 0.9
    assert result.plan.payload.pain_level == 7
    assert result.plan.payload.medication_labels == ("Ibuprofen 400 mg",)
    assert result.session.retry_counts == {}
    print("✓ Slots collected turn by turn")


def test_slot_retry_and_exhaustion():
    manager = make_manager()
    result = capture(manager, "Schmerzstärke 7")

    result = manager.handle(result.session, CustomSlotInput("blau"))
    assert result.state is S.SLOT_FILLING
    assert result.session.retry_counts == {"time": 1}
    assert "vor einer Stunde" in result.system_output

    result = manager.handle(result.session, CustomSlotInput("blau"))
    assert result.session.retry_counts == {"time": 2}

    result = manager.handle(result.session, CustomSlotInput("blau"))
    assert result.state is S.REVIEWING
    assert isinstance(result.plan, NotSupportedPlan)
    assert result.debug["error_kind"] == "slot_retry_exhausted"
    assert result.session.retry_counts == {"time": 3}
    print("✓ Slot filling terminates after three failures")


def test_capture_failed_while_slot_filling():
    """A failed recognition counts as one unusable slot answer"""
    manager = make_manager()
    result = capture(manager, "Schmerzstärke 7")

    result = manager.handle(result.session, CaptureFailed("timeout"))
    assert result.state is S.SLOT_FILLING
    assert result.transitions == ((S.SLOT_FILLING, S.SLOT_FILLING),)
    assert result.session.retry_counts == {"time": 1}
    assert result.debug["error_kind"] == "parse_failure"
    assert result.debug["error"] == "timeout"

    result = manager.handle(result.session, CaptureFailed("timeout"))
    result = manager.handle(result.session, CaptureFailed("timeout"))
    assert result.state is S.REVIEWING
    assert isinstance(result.plan, NotSupportedPlan)
    assert result.debug["error_kind"] == "slot_retry_exhausted"
    assert result.session.retry_counts == {"time": 3}

    unavailable = capture(manager, "Schmerzstärke 7")
    unavailable = manager.handle(unavailable.session, CaptureFailed("kein Mikrofon", unavailable=True))
    assert unavailable.state is S.IDLE
    print("✓ Capture failures during slot filling use up retries")


# ========== Disambiguation Tests ==========

def disambiguating_session(manager):
    manager.planner.classifier = MockClassifier([
        Candidate(LAST_ENTRY, 0.52, ("query.question_word",)),
        Candidate(CREATE, 0.48, ("create.pain_keyword",)),
    ])
    return capture(manager, "Kopfschmerzen")


def test_disambiguation_offers_top_two():
    manager = make_manager()
    result = disambiguating_session(manager)

    assert result.state is S.DISAMBIGUATING
    assert isinstance(result.plan, DisambiguationPlan)
    assert result.system_output == (
        "Meintest du eine Frage zu deinen Einträgen oder einen neuen Eintrag anlegen?"
    )
    print("✓ Close candidates offered to the user")


def test_select_option_skips_classification():
    manager = make_manager()
    result = disambiguating_session(manager)

    chosen = manager.handle(result.session, SelectOption(LAST_ENTRY))
    assert chosen.state is S.REVIEWING
    assert chosen.transitions == ((S.DISAMBIGUATING, S.REVIEWING),)
    assert isinstance(chosen.plan, QueryPlan)
    assert chosen.plan.confidence == 0.9

    chosen = manager.handle(result.session, SelectOption(CREATE))
    assert chosen.state is S.SLOT_FILLING
    assert isinstance(chosen.plan, SlotFillingPlan)
    print("✓ Picked intent goes straight to the plan builder")


def test_select_option_not_offered_is_illegal():
    manager = make_manager()
    result = disambiguating_session(manager)
    delete = Intent(IntentKind.MUTATION, mutation_type=MutationType.DELETE)

    rejected = manager.handle(result.session, SelectOption(delete))
    assert isinstance(rejected, IllegalCommand)
    assert rejected.state is S.DISAMBIGUATING
    print("✓ Unknown option rejected")


# ========== Save / Confirm Tests ==========

def test_save_and_succeed():
    manager = make_manager()
    reviewing = capture(manager, CREATE_TEXT)

    saving = manager.handle(reviewing.session, Save())
    assert saving.state is S.SAVING
    assert isinstance(saving.pending_execution, MutationPlan)
    assert saving.session.approved_plan == saving.pending_execution

    done = manager.handle(saving.session, SaveSucceeded({"message": "Eintrag erstellt"}))
    assert done.state is S.DONE
    assert done.pending_execution is None
    assert done.system_output == render(PromptTemplateID.DIALOGUE_SAVED)
    print("✓ reviewing -> saving -> done")


def test_save_failure_returns_to_reviewing_with_error():
    manager = make_manager()
    reviewing = capture(manager, CREATE_TEXT)
    saving = manager.handle(reviewing.session, Save())

    failed = manager.handle(saving.session, SaveFailed("Datenbank nicht erreichbar"))
    assert failed.state is S.REVIEWING
    assert failed.session.last_error == "Datenbank nicht erreichbar"
    assert "Datenbank nicht erreichbar" in failed.system_output
    assert failed.debug["error_kind"] == "execution_failure"
    assert isinstance(failed.plan, MutationPlan)

    retried = manager.handle(failed.session, Save())
    assert retried.state is S.SAVING
    assert retried.session.last_error is None
    print("✓ Save failure keeps the plan for a retry")


def test_confirm_dangerous_plan():
    manager = make_manager()
    confirming = capture(manager, DELETE_TEXT)

    assert isinstance(manager.handle(confirming.session, Save()), IllegalCommand)

    saving = manager.handle(confirming.session, Confirm())
    assert saving.state is S.SAVING
    assert isinstance(saving.pending_execution, MutationPlan)
    assert saving.pending_execution.mutation_type is MutationType.DELETE
    print("✓ Confirm hands the unwrapped plan to the executor")


def test_failed_risky_save_needs_confirmation_again():
    manager = make_manager()
    confirming = capture(manager, DELETE_TEXT)
    saving = manager.handle(confirming.session, Confirm())
    failed = manager.handle(saving.session, SaveFailed("Kein passender Eintrag gefunden"))

    again = manager.handle(failed.session, Save())
    assert again.state is S.CONFIRMING
    assert isinstance(again.plan, ConfirmPlan)
    print("✓ Retry of a risky save goes through confirming")


def test_confirm_without_pending_confirmation_is_illegal():
    manager = make_manager()
    reviewing = capture(manager, CREATE_TEXT)

    rejected = manager.handle(reviewing.session, Confirm())
    assert isinstance(rejected, IllegalCommand)
    assert rejected.command_type == "Confirm"
    print("✓ Confirm only valid while confirming")


# ========== Change Tests ==========

def test_change_then_edit_then_save():
    manager = make_manager()
    reviewing = capture(manager, CREATE_TEXT)

    editing = manager.handle(reviewing.session, Change())
    assert editing.state is S.REVIEWING
    assert editing.session.editing
    assert editing.system_output == render(PromptTemplateID.DIALOGUE_CHANGE)

    edited = manager.handle(editing.session, CustomSlotInput("Schmerzstärke 6"))
    assert edited.state is S.REVIEWING
    assert edited.transitions == ((S.REVIEWING, S.REVIEWING),)
    assert edited.plan.payload.pain_level == 6
    assert edited.plan.payload.medication_labels == ("Sumatriptan 50",)

    saving = manager.handle(edited.session, Save())
    assert saving.state is S.SAVING
    assert saving.pending_execution.payload.pain_level == 6
    print("✓ Edited plan is saved")


def test_change_from_confirming_requires_reconfirmation():
    manager = make_manager()
    confirming = capture(manager, UPDATE_TEXT)
    assert confirming.state is S.CONFIRMING

    editing = manager.handle(confirming.session, Change())
    assert editing.state is S.REVIEWING
    assert isinstance(editing.plan, MutationPlan)

    again = manager.handle(editing.session, Save())
    assert again.state is S.CONFIRMING
    assert isinstance(again.plan, ConfirmPlan)
    print("✓ Medium-risk plan cannot skip confirmation after change")


# ========== Cancel and Lifecycle Tests ==========

def test_cancel_from_any_state():
    manager = make_manager()
    sessions = [
        manager.handle(manager.new_session(), StartCapture()).session,
        capture(manager, CREATE_TEXT).session,
        capture(manager, DELETE_TEXT).session,
        capture(manager, "Schmerzstärke 7").session,
    ]
    for session in sessions:
        result = manager.handle(session, Cancel("user"))
        assert result.state is S.IDLE
        assert result.plan is None
        assert result.session.session_id == session.session_id
        assert result.transitions == ((session.state, S.IDLE),)
        assert result.system_output == render(PromptTemplateID.DIALOGUE_CANCELLED)
    print("✓ Cancel returns to idle from every state")


def test_cancel_in_idle_is_noop():
    manager = make_manager()
    session = manager.new_session()
    result = manager.handle(session, Cancel())

    assert result.state is S.IDLE
    assert result.transitions == ()
    print("✓ Cancel in idle changes nothing")


def test_illegal_commands_leave_session_untouched():
    manager = make_manager()
    session = manager.new_session()

    for command in [Save(), Confirm(), Change(), CustomSlotInput("x"), SaveSucceeded(), SaveFailed("x"),
                    CaptureCompleted(Transcript("hallo")), SelectOption(CREATE)]:
        result = manager.handle(session, command)
        assert isinstance(result, IllegalCommand)
        assert result.state is S.IDLE

    reviewing = capture(manager, CREATE_TEXT)
    assert isinstance(manager.handle(reviewing.session, StartCapture()), IllegalCommand)
    print("✓ Illegal commands rejected")


def test_done_starts_new_session():
    manager = make_manager()
    reviewing = capture(manager, CREATE_TEXT)
    saving = manager.handle(reviewing.session, Save())
    done = manager.handle(saving.session, SaveSucceeded())

    again = manager.handle(done.session, StartCapture())
    assert again.state is S.RECORDING
    assert again.session.session_id != done.session.session_id
    assert again.session.transcripts == ()
    assert again.session.turn_count == 1
    print("✓ Capture after done starts a fresh session")


def test_unexpected_error_ends_in_idle():
    manager = DialogueManager(BrokenPlanner())
    started = manager.handle(manager.new_session(), StartCapture())
    result = manager.handle(started.session, CaptureCompleted(Transcript("Stärke 5")))

    assert isinstance(result, TurnResult)
    assert result.state is S.IDLE
    assert result.system_output == render(PromptTemplateID.FAILURE_INTERNAL)
    assert result.debug["error"] == "planner exploded"
    print("✓ Internal errors never escape handle()")


def test_every_recorded_transition_is_allowed():
    manager = make_manager()
    results = []

    reviewing = capture(manager, CREATE_TEXT)
    results.append(reviewing)
    results.append(manager.handle(reviewing.session, Save()))
    results.append(capture(manager, DELETE_TEXT))
    slot = capture(manager, "Schmerzstärke 7")
    results.append(slot)
    results.append(manager.handle(slot.session, CustomSlotInput("jetzt")))

    for result in results:
        for source, target in result.transitions:
            assert target in ALLOWED_TRANSITIONS[source]
    print("✓ All transitions within the allowed table")


if __name__ == "__main__":
    import pytest
    sys.exit(pytest.main([__file__, "-v"]))
