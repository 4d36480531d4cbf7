"""
Console Test Harness for the voice planner (Functional Core)

Typed text stands in for speech capture. Drives DialogueManager.handle()
directly and executes approved plans against an in-memory diary.
"""

import logging
import sys

from voiceplanner.commands import (
    CaptureCompleted,
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
from voiceplanner.contracts import Transcript
from voiceplanner.core.dialogue_manager import DialogueManager
from voiceplanner.core.planner import create_planner
from voiceplanner.executor import DiaryExecutor, ExecutionFailure, InMemoryDiaryStore
from voiceplanner.persistence import SessionPersistence
from voiceplanner.plans import DisambiguationPlan, NotSupportedPlan, SlotFillingPlan
from voiceplanner.results import IllegalCommand

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"quit", "exit", "stop"}
CANCEL_WORDS = {"abbrechen", "cancel", "nein"}
SAVE_WORDS = {"speichern", "save", "ok"}
CONFIRM_WORDS = {"ja", "bestätigen", "confirm"}
CHANGE_WORDS = {"ändern", "change"}


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def print_debug_info(turn_result):
    """Print debug information from TurnResult"""
    debug = turn_result.debug
    if not debug:
        return
    print("-" * 60)
    if 'slots' in debug:
        present = {k: v for k, v in debug['slots'].items() if v not in (None, [], ())}
        print(f"Slots: {present}")
    for candidate in debug.get('candidates', []):
        intent = candidate['intent']
        detail = intent['mutation_type'] or intent['query_kind'] or intent['target'] or ""
        print(f"  {intent['kind']}/{detail}: {candidate['score']} {candidate['reasons']}")
    if 'error_kind' in debug:
        print(f"Error kind: {debug['error_kind']}")
    if 'error' in debug:
        print(f"ERROR: {debug['error']}")
    print("-" * 60)


def command_for_input(session, text):
    """
    Map a typed line to the command(s) it stands for in the current state.

    Returns:
        list: Commands to handle in order (empty if the input is ignored)
    """
    lowered = text.lower()
    state = session.state
    plan = session.current_plan

    if lowered in CANCEL_WORDS and state is not DialogueState.IDLE:
        return [Cancel("user")]

    if state in (DialogueState.IDLE, DialogueState.DONE):
        return [StartCapture(), CaptureCompleted(Transcript(text))]

    if state is DialogueState.SLOT_FILLING:
        return [CustomSlotInput(text)]

    if state is DialogueState.DISAMBIGUATING and isinstance(plan, DisambiguationPlan):
        if lowered in ("1", "2"):
            return [SelectOption(plan.options[int(lowered) - 1].intent)]
        print("Bitte 1 oder 2 eingeben.")
        return []

    if state is DialogueState.CONFIRMING:
        if lowered in CONFIRM_WORDS:
            return [Confirm()]
        if lowered in CHANGE_WORDS:
            return [Change()]
        print("Bitte 'ja', 'ändern' oder 'abbrechen' eingeben.")
        return []

    if state is DialogueState.REVIEWING:
        if lowered in SAVE_WORDS:
            return [Save()]
        if lowered in CHANGE_WORDS:
            return [Change()]
        if session.editing:
            return [CustomSlotInput(text)]
        if isinstance(plan, NotSupportedPlan):
            return [StartCapture(), CaptureCompleted(Transcript(text))]
        print("Bitte 'speichern', 'ändern' oder 'abbrechen' eingeben.")
        return []

    return []


def print_plan_hints(session):
    """Show quick replies and options for the current plan"""
    plan = session.current_plan
    if isinstance(plan, SlotFillingPlan) and plan.suggestions:
        print("Vorschläge: " + " | ".join(s.label for s in plan.suggestions))
    elif isinstance(plan, DisambiguationPlan):
        for i, option in enumerate(plan.options, start=1):
            print(f"  [{i}] {option.intent.key} ({option.score})")
    elif isinstance(plan, NotSupportedPlan) and plan.suggestions:
        print("Vorschläge: " + " | ".join(s.label for s in plan.suggestions))


def main():
    """Run console test"""
    print_separator()
    print("VOICE PLANNER - CONSOLE TEST")
    print_separator()

    try:
        config = PlannerConfig.from_json()
        planner = create_planner(config)
        dm = DialogueManager(planner, config)
        executor = DiaryExecutor(InMemoryDiaryStore(), clock=config.make_clock())
        persistence = SessionPersistence()
    except (OSError, ValueError, TypeError) as e:
        print(f"\nFailed to initialize: {e}")
        return 1

    print("Sag etwas, z.B. 'Schmerzstufe 7, Ibuprofen 400 genommen'")
    print("Type 'quit', 'exit', or 'stop' to end\n")

    session = dm.new_session()

    while True:
        try:
            user_input = input("> ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nSession interrupted by user")
            break

        if user_input.lower() in EXIT_COMMANDS:
            break
        if not user_input:
            continue

        pending = command_for_input(session, user_input)
        while pending:
            command = pending.pop(0)
            result = dm.handle(session, command)

            if isinstance(result, IllegalCommand):
                print(f"\n(Nicht möglich: {result.reason})\n")
                break

            session = result.session
            persistence.save_turn(result, type(command).__name__)
            print(f"\nSystem: {result.system_output}")
            print(f"[Turn {session.turn_count}, {session.state.value}]")
            print_debug_info(result)

            if result.pending_execution is not None:
                try:
                    outcome = executor.execute(result.pending_execution)
                except ExecutionFailure as e:
                    pending.append(SaveFailed(str(e)))
                else:
                    print(f"=> {outcome.message}")
                    pending.append(SaveSucceeded(outcome.to_dict()))

        print_plan_hints(session)
        print()

    print_separator()
    print("Console test complete")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main())
