"""
Dialogue Manager - voice session state machine (Functional Core)

Responsibilities:
- Validate every command against the lifecycle state
- Run the planner on captured transcripts and route the resulting plan
  to reviewing, slot filling or disambiguation
- Apply slot answers, disambiguation picks and edits
- Enforce the confirmation gate before anything reaches the executor
- Record state transitions and error kinds per turn

Design principles:
- Functional core: session snapshot in, TurnResult out, no I/O
- Commands are the only input; IllegalCommand leaves the session untouched
- Never raises from handle(): unexpected errors end the session in idle
- Execution is requested, not performed (TurnResult.pending_execution)
"""

import logging
from typing import Dict, FrozenSet, List, Optional, Tuple

from voiceplanner.commands import (
    CaptureCompleted,
    CaptureFailed,
    Cancel,
    Change,
    Command,
    Confirm,
    CustomSlotInput,
    DialogueSession,
    DialogueState,
    Save,
    SaveFailed,
    SaveSucceeded,
    SelectOption,
    StartCapture,
)
from voiceplanner.config import PlannerConfig
from voiceplanner.contracts import IntentKind
from voiceplanner.core.planner import PlanningOutcome, VoicePlanner, candidate_summary
from voiceplanner.plans import (
    ConfirmPlan,
    DisambiguationPlan,
    MutationPlan,
    NavigatePlan,
    NotSupportedPlan,
    Plan,
    QueryPlan,
    SlotFillingPlan,
    unwrap,
)
from voiceplanner.results import ErrorKind, IllegalCommand, TurnResult
from voiceplanner.utils.helpers import generate_session_id
from voiceplanner.utils.prompt_templates import PromptTemplateID, describe_intent, render

logger = logging.getLogger(__name__)

S = DialogueState

_FORWARD_TRANSITIONS: Dict[DialogueState, FrozenSet[DialogueState]] = {
    S.IDLE: frozenset({S.RECORDING}),
    S.RECORDING: frozenset({S.PROCESSING}),
    S.PROCESSING: frozenset({S.REVIEWING, S.SLOT_FILLING, S.DISAMBIGUATING}),
    S.SLOT_FILLING: frozenset({S.SLOT_FILLING, S.REVIEWING}),
    S.DISAMBIGUATING: frozenset({S.REVIEWING, S.SLOT_FILLING}),
    S.REVIEWING: frozenset({S.CONFIRMING, S.SAVING, S.SLOT_FILLING, S.REVIEWING, S.RECORDING}),
    S.CONFIRMING: frozenset({S.SAVING, S.REVIEWING}),
    S.SAVING: frozenset({S.DONE, S.REVIEWING}),
    S.DONE: frozenset({S.RECORDING}),
}
# Cancel (-> idle) is allowed from every state
ALLOWED_TRANSITIONS: Dict[DialogueState, FrozenSet[DialogueState]] = {
    state: targets | {S.IDLE} if state is not S.IDLE else targets
    for state, targets in _FORWARD_TRANSITIONS.items()
}

_ACTION_PLANS = (NavigatePlan, QueryPlan, MutationPlan)


class _Turn:
    """Accumulates the session snapshot and transitions of one command."""

    def __init__(self, session: DialogueSession):
        self.session = session
        self.transitions: List[Tuple[DialogueState, DialogueState]] = []
        self.debug: Dict[str, object] = {}

    def move(self, target: DialogueState, **changes) -> None:
        current = self.session.state
        if target not in ALLOWED_TRANSITIONS[current]:
            raise RuntimeError(f"Transition {current.value} -> {target.value} is not allowed")
        logger.info(f"[{self.session.session_id}] {current.value} -> {target.value}")
        self.transitions.append((current, target))
        self.session = self.session.evolve(state=target, **changes)

    def update(self, **changes) -> None:
        self.session = self.session.evolve(**changes)

    def result(self, system_output: str, pending_execution: Optional[Plan] = None) -> TurnResult:
        session = self.session.evolve(turn_count=self.session.turn_count + 1)
        return TurnResult(
            session=session,
            system_output=system_output,
            transitions=tuple(self.transitions),
            pending_execution=pending_execution,
            debug=self.debug,
        )


class DialogueManager:
    """
    Lifecycle state machine over DialogueSession snapshots.

    Stateless between calls: the caller keeps the latest snapshot and
    passes it back with the next command.
    """

    def __init__(self, planner: VoicePlanner, config: Optional[PlannerConfig] = None):
        """
        Initialize dialogue manager.

        Args:
            planner: VoicePlanner (stateless, safe to cache)
            config: Planner configuration (confidence after slot filling/choice)

        Raises:
            TypeError: If planner is missing plan() or plan_for_intent()
        """
        for method in ("plan", "plan_for_intent"):
            if not callable(getattr(planner, method, None)):
                raise TypeError(f"planner must have callable {method}() method")

        self.planner = planner
        self.config = config or PlannerConfig()
        logger.info("Dialogue manager initialized")

    @staticmethod
    def new_session(session_id: Optional[str] = None) -> DialogueSession:
        """Fresh idle session."""
        return DialogueSession(session_id=session_id or generate_session_id())

    # =========================================================================
    # Public API
    # =========================================================================

    def handle(self, session: DialogueSession, command: Command) -> TurnResult | IllegalCommand:
        """
        Process one command.

        Args:
            session: Current snapshot
            command: Command from the host (user action or capability signal)

        Returns:
            TurnResult with the new snapshot, or IllegalCommand when the
            command is not valid in the current state
        """
        try:
            result = self._dispatch(session, command)
        except Exception as e:
            logger.error(f"[{session.session_id}] Unexpected error handling "
                         f"{type(command).__name__}: {e}", exc_info=True)
            return self._abort(session, render(PromptTemplateID.FAILURE_INTERNAL), error=str(e))

        if isinstance(result, IllegalCommand):
            logger.warning(f"[{session.session_id}] Illegal command {result.command_type} "
                           f"in {result.state.value}: {result.reason}")
        return result

    def _dispatch(self, session: DialogueSession, command: Command) -> TurnResult | IllegalCommand:
        if isinstance(command, Cancel):
            return self._on_cancel(session, command)
        if isinstance(command, StartCapture):
            return self._on_start_capture(session)
        if isinstance(command, CaptureCompleted):
            return self._on_capture_completed(session, command)
        if isinstance(command, CaptureFailed):
            return self._on_capture_failed(session, command)
        if isinstance(command, SelectOption):
            return self._on_select_option(session, command)
        if isinstance(command, CustomSlotInput):
            return self._on_custom_slot_input(session, command)
        if isinstance(command, Save):
            return self._on_save(session)
        if isinstance(command, Confirm):
            return self._on_confirm(session)
        if isinstance(command, Change):
            return self._on_change(session)
        if isinstance(command, SaveSucceeded):
            return self._on_save_succeeded(session, command)
        if isinstance(command, SaveFailed):
            return self._on_save_failed(session, command)
        return _illegal(session, command, "Unknown command")

    # =========================================================================
    # Capture
    # =========================================================================

    def _on_start_capture(self, session: DialogueSession) -> TurnResult | IllegalCommand:
        if session.state is S.DONE:
            # Next dialogue gets its own id and turn log
            session = self.new_session().evolve(state=S.DONE)
        elif session.state is S.REVIEWING and isinstance(session.current_plan, NotSupportedPlan):
            session = self.new_session(session.session_id).evolve(
                state=S.REVIEWING, turn_count=session.turn_count
            )
        elif session.state is not S.IDLE:
            return _illegal(session, StartCapture(), "Capture can only start from idle or done")

        turn = _Turn(session)
        turn.move(S.RECORDING)
        return turn.result(render(PromptTemplateID.DIALOGUE_LISTENING))

    def _on_capture_completed(self, session: DialogueSession, command: CaptureCompleted):
        if session.state is not S.RECORDING:
            return _illegal(session, command, "No capture in progress")

        turn = _Turn(session)
        turn.move(S.PROCESSING, transcripts=session.transcripts + (command.transcript,))

        outcome = self.planner.plan(command.transcript)
        turn.debug.update(
            transcript=command.transcript.text,
            slots=outcome.slots.to_dict(),
            candidates=candidate_summary(outcome.candidates),
        )
        self._record_outcome_errors(turn, outcome)
        return self._route(turn, outcome)

    def _on_capture_failed(self, session: DialogueSession, command: CaptureFailed):
        if session.state not in (S.RECORDING, S.SLOT_FILLING):
            return _illegal(session, command, "No capture in progress")

        if command.unavailable:
            logger.warning(f"[{session.session_id}] Speech capability unavailable: {command.error}")
            output = render(PromptTemplateID.FAILURE_UNAVAILABLE, error=command.error)
            kind = ErrorKind.CAPABILITY_UNAVAILABLE
        else:
            logger.warning(f"[{session.session_id}] Capture failed: {command.error}")
            if session.state is S.SLOT_FILLING and isinstance(session.current_plan, SlotFillingPlan):
                # Counts as one unusable answer against the retry limit
                result = self._answer_slot(session, session.current_plan, "")
                result.debug.setdefault("error_kind", ErrorKind.PARSE_FAILURE.value)
                result.debug["error"] = command.error
                return result
            output = render(PromptTemplateID.FAILURE_CAPTURE, error=command.error)
            kind = ErrorKind.PARSE_FAILURE

        result = self._abort(session, output, error=command.error)
        result.debug["error_kind"] = kind.value
        return result

    # =========================================================================
    # Disambiguation and slot filling
    # =========================================================================

    def _on_select_option(self, session: DialogueSession, command: SelectOption):
        plan = session.current_plan
        if session.state is not S.DISAMBIGUATING or not isinstance(plan, DisambiguationPlan):
            return _illegal(session, command, "Nothing to choose from")

        chosen = next((c for c in plan.options if c.intent == command.intent), None)
        if chosen is None:
            return _illegal(session, command, f"Intent {command.intent.key} was not offered")

        confidence = max(chosen.score, self.config.user_choice_confidence)
        logger.info(f"[{session.session_id}] User chose {chosen.intent.key}")
        outcome = self.planner.plan_for_intent(chosen.intent, session.collected, confidence, chosen.reasons)

        turn = _Turn(session)
        self._record_outcome_errors(turn, outcome)
        return self._route(turn, outcome)

    def _on_custom_slot_input(self, session: DialogueSession, command: CustomSlotInput):
        if session.state is S.SLOT_FILLING and isinstance(session.current_plan, SlotFillingPlan):
            return self._answer_slot(session, session.current_plan, command.value)
        if session.state is S.REVIEWING and session.editing and session.intent is not None:
            return self._apply_edit(session, command.value)
        return _illegal(session, command, "No slot question or edit is open")

    def _answer_slot(self, session: DialogueSession, plan: SlotFillingPlan, value: str) -> TurnResult:
        slot_filler = self.planner.slot_filler
        answer = slot_filler.apply_answer(plan.intent, session.collected, value, session.retry_counts)
        turn = _Turn(session)
        turn.debug.update(slot=answer.slot.value, answer=value, accepted=answer.accepted)

        if answer.exhausted:
            turn.debug["error_kind"] = ErrorKind.SLOT_RETRY_EXHAUSTED.value
            failed = slot_filler.exhausted_plan(answer.slot)
            turn.move(S.REVIEWING, current_plan=failed, retry_counts=answer.retry_counts)
            return turn.result(failed.reason)

        if not answer.accepted:
            retry = slot_filler.build_plan(plan.intent, session.collected, plan.confidence, answer.retry_counts)
            turn.move(S.SLOT_FILLING, current_plan=retry, retry_counts=answer.retry_counts)
            return turn.result(retry.prompt)

        turn.update(collected=answer.slots, retry_counts=answer.retry_counts)
        missing = slot_filler.missing_slots(plan.intent, answer.slots)
        confidence = plan.confidence if missing else max(
            session.base_confidence, self.config.slot_filled_confidence
        )
        outcome = self.planner.plan_for_intent(
            plan.intent, answer.slots, confidence, retry_counts=answer.retry_counts
        )
        self._record_outcome_errors(turn, outcome)
        return self._route(turn, outcome)

    def _apply_edit(self, session: DialogueSession, value: str) -> TurnResult:
        edit = self.planner.parser.parse(value)
        collected = session.collected.merge(edit)
        turn = _Turn(session)
        turn.debug.update(edit=value, slots=edit.to_dict())
        turn.update(collected=collected, last_error=None)
        outcome = self.planner.plan_for_intent(
            session.intent, collected, session.base_confidence, retry_counts=session.retry_counts
        )
        self._record_outcome_errors(turn, outcome)
        return self._route(turn, outcome)

    # =========================================================================
    # Review, confirmation and saving
    # =========================================================================

    def _on_save(self, session: DialogueSession):
        if session.state is not S.REVIEWING:
            return _illegal(session, Save(), "Save is only possible while reviewing")

        plan = session.current_plan
        if isinstance(plan, ConfirmPlan):
            turn = _Turn(session)
            turn.move(S.CONFIRMING, editing=False)
            return turn.result(plan.question)

        if not isinstance(plan, _ACTION_PLANS):
            return _illegal(session, Save(), "Nothing to save")

        gated = self.planner.builder.gate(plan)
        if isinstance(gated, ConfirmPlan):
            # Retry after a failed save of a risky plan goes through confirming again
            turn = _Turn(session)
            turn.move(S.CONFIRMING, current_plan=gated, editing=False)
            return turn.result(gated.question)

        return self._start_saving(session, plan)

    def _on_confirm(self, session: DialogueSession):
        plan = session.current_plan
        if session.state is not S.CONFIRMING or not isinstance(plan, ConfirmPlan):
            return _illegal(session, Confirm(), "Nothing to confirm")
        logger.info(f"[{session.session_id}] User confirmed {plan.pending.kind} plan")
        return self._start_saving(session, plan.pending)

    def _on_change(self, session: DialogueSession):
        plan = session.current_plan
        if session.state not in (S.CONFIRMING, S.REVIEWING) or plan is None:
            return _illegal(session, Change(), "Nothing to change")
        if not isinstance(unwrap(plan), _ACTION_PLANS):
            return _illegal(session, Change(), f"A {plan.kind} plan cannot be edited")

        turn = _Turn(session)
        turn.move(S.REVIEWING, current_plan=unwrap(plan), editing=True)
        return turn.result(render(PromptTemplateID.DIALOGUE_CHANGE))

    def _start_saving(self, session: DialogueSession, plan: Plan) -> TurnResult:
        turn = _Turn(session)
        turn.move(S.SAVING, approved_plan=plan, editing=False, last_error=None)
        return turn.result(render(PromptTemplateID.DIALOGUE_SAVING), pending_execution=plan)

    def _on_save_succeeded(self, session: DialogueSession, command: SaveSucceeded):
        if session.state is not S.SAVING:
            return _illegal(session, command, "No save in progress")
        turn = _Turn(session)
        turn.debug["result"] = command.result
        turn.move(S.DONE, approved_plan=None)
        logger.info(f"[{session.session_id}] Save succeeded")
        return turn.result(render(PromptTemplateID.DIALOGUE_SAVED))

    def _on_save_failed(self, session: DialogueSession, command: SaveFailed):
        if session.state is not S.SAVING:
            return _illegal(session, command, "No save in progress")
        logger.warning(f"[{session.session_id}] Save failed: {command.error}")

        turn = _Turn(session)
        turn.debug.update(error_kind=ErrorKind.EXECUTION_FAILURE.value, error=command.error)
        turn.move(
            S.REVIEWING,
            current_plan=session.approved_plan,
            approved_plan=None,
            last_error=command.error,
        )
        return turn.result(render(PromptTemplateID.FAILURE_SAVE, error=command.error))

    def _on_cancel(self, session: DialogueSession, command: Cancel) -> TurnResult:
        if session.state is S.IDLE:
            return _Turn(session).result(render(PromptTemplateID.DIALOGUE_CANCELLED))
        logger.info(f"[{session.session_id}] Cancelled in {session.state.value}"
                    f"{': ' + command.reason if command.reason else ''}")
        return self._abort(session, render(PromptTemplateID.DIALOGUE_CANCELLED))

    # =========================================================================
    # Routing helpers
    # =========================================================================

    def _route(self, turn: _Turn, outcome: PlanningOutcome) -> TurnResult:
        """Move to the state matching the plan kind."""
        plan = outcome.plan
        changes = dict(current_plan=plan, collected=outcome.slots)
        if outcome.intent is not None:
            changes.update(intent=outcome.intent, base_confidence=outcome.confidence)

        if isinstance(plan, DisambiguationPlan):
            first, second = plan.options
            turn.move(S.DISAMBIGUATING, **changes)
            return turn.result(render(
                PromptTemplateID.DIALOGUE_DISAMBIGUATE,
                first=describe_intent(first.intent),
                second=describe_intent(second.intent),
            ))

        if isinstance(plan, SlotFillingPlan):
            turn.move(S.SLOT_FILLING, **changes)
            return turn.result(plan.prompt)

        turn.move(S.REVIEWING, **changes)
        if isinstance(plan, ConfirmPlan) and not turn.session.editing:
            turn.move(S.CONFIRMING)
        return turn.result(_review_output(plan))

    @staticmethod
    def _record_outcome_errors(turn: _Turn, outcome: PlanningOutcome) -> None:
        if outcome.error:
            turn.debug.update(error_kind=ErrorKind.PARSE_FAILURE.value, error=outcome.error)
        elif outcome.intent is not None and outcome.intent.kind is IntentKind.UNSUPPORTED:
            turn.debug["error_kind"] = ErrorKind.CLASSIFICATION_FLOOR.value

    def _abort(self, session: DialogueSession, output: str, error: Optional[str] = None) -> TurnResult:
        """End the dialogue in idle with a fresh snapshot."""
        fresh = self.new_session(session.session_id).evolve(turn_count=session.turn_count + 1)
        transitions = ((session.state, S.IDLE),) if session.state is not S.IDLE else ()
        debug = {"error": error} if error else {}
        return TurnResult(session=fresh, system_output=output, transitions=transitions, debug=debug)


def _review_output(plan: Plan) -> str:
    if isinstance(plan, ConfirmPlan):
        return plan.question
    if isinstance(plan, NotSupportedPlan):
        return plan.reason
    if isinstance(plan, SlotFillingPlan):
        return plan.prompt
    if isinstance(plan, DisambiguationPlan):
        return plan.transcript
    return render(PromptTemplateID.DIALOGUE_REVIEW, summary=plan.summary)


def _illegal(session: DialogueSession, command: Command, reason: str) -> IllegalCommand:
    return IllegalCommand(reason=reason, command_type=type(command).__name__, state=session.state)
