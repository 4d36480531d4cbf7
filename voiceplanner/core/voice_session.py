"""
Voice Session - async runtime around the dialogue manager (Imperative Shell)

Responsibilities:
- Funnel every event (user taps, capture results, TTS completion, executor
  outcomes) through one asyncio.Queue consumed by a single loop
- Start speech capture, speak prompts, and run the executor off the loop
  according to the state the dialogue manager reports
- Cancel in-flight capture/TTS immediately and discard their late results
- Expose the presentation callbacks and introspection properties

Design principles:
- The DialogueManager stays pure; all I/O lives here
- One consumer: no two commands are ever handled concurrently
- Generation counter: events produced by work started before a cancel
  carry a stale generation and are dropped
"""

import asyncio
import logging
from typing import Dict, List, Optional

from voiceplanner.capabilities import (
    CapabilityUnavailable,
    CaptureError,
    SilentSynthesis,
    SpeechCapture,
    SpeechSynthesis,
)
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
from voiceplanner.contracts import Intent
from voiceplanner.core.dialogue_manager import DialogueManager
from voiceplanner.executor import DiaryExecutor, ExecutionFailure
from voiceplanner.persistence import SessionPersistence
from voiceplanner.plans import Plan
from voiceplanner.results import IllegalCommand, TurnResult

logger = logging.getLogger(__name__)

_CLOSE = object()

# States whose system output is spoken without listening afterwards
_SPOKEN_STATES = {
    DialogueState.REVIEWING,
    DialogueState.DISAMBIGUATING,
    DialogueState.CONFIRMING,
    DialogueState.DONE,
    DialogueState.IDLE,
}


class VoiceSession:
    """
    One voice dialogue bound to injected capabilities.

    Usage:
        session = VoiceSession(manager, capture, synthesis, executor)
        runner = asyncio.create_task(session.run())
        session.on_start()
        await session.wait_for_state(DialogueState.REVIEWING)
        session.on_save()
        ...
        await session.close()
    """

    def __init__(
        self,
        manager: DialogueManager,
        capture: SpeechCapture,
        executor: DiaryExecutor,
        synthesis: Optional[SpeechSynthesis] = None,
        persistence: Optional[SessionPersistence] = None,
        session_id: Optional[str] = None,
    ):
        """
        Args:
            manager: DialogueManager (pure, shared between sessions)
            capture: Speech capture capability
            executor: Executor for approved plans (called in a worker thread)
            synthesis: Speech synthesis capability (silent if omitted)
            persistence: Optional turn log

        Raises:
            TypeError: If a capability is missing its methods
        """
        if not callable(getattr(manager, "handle", None)):
            raise TypeError("manager must have callable handle() method")
        if not callable(getattr(capture, "listen", None)) or not callable(getattr(capture, "stop", None)):
            raise TypeError("capture must have callable listen() and stop() methods")
        if not callable(getattr(executor, "execute", None)):
            raise TypeError("executor must have callable execute() method")

        self.manager = manager
        self.capture = capture
        self.synthesis = synthesis or SilentSynthesis()
        self.executor = executor
        self.persistence = persistence

        self._session: DialogueSession = manager.new_session(session_id)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._changed = asyncio.Condition()
        self._generation = 0
        self._tasks: set = set()
        self._listen_task: Optional[asyncio.Task] = None

        self.outputs: List[str] = []
        self.last_result: Optional[TurnResult] = None
        self.last_illegal: Optional[IllegalCommand] = None
        self.last_execution = None

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def session(self) -> DialogueSession:
        return self._session

    @property
    def state(self) -> DialogueState:
        return self._session.state

    @property
    def current_plan(self) -> Optional[Plan]:
        return self._session.current_plan

    @property
    def retry_counts(self) -> Dict[str, int]:
        return dict(self._session.retry_counts)

    # =========================================================================
    # Presentation callbacks
    # =========================================================================

    def on_start(self) -> None:
        self._post(StartCapture())

    def on_confirm(self) -> None:
        self._post(Confirm())

    def on_change(self) -> None:
        self._post(Change())

    def on_save(self) -> None:
        self._post(Save())

    def on_select_option(self, intent: Intent) -> None:
        self._post(SelectOption(intent))

    def on_custom_slot_input(self, value: str) -> None:
        """Typed answer or tapped suggestion; replaces the pending spoken answer."""
        self._cancel_listen()
        self._post(CustomSlotInput(value))

    def on_cancel(self, reason: str = "") -> None:
        """Stop everything now. Results of work already started are dropped."""
        self._generation += 1
        self._stop_io()
        self._post(Cancel(reason))

    # =========================================================================
    # Event loop
    # =========================================================================

    async def run(self) -> None:
        """Consume events until close()."""
        logger.info(f"Voice session {self._session.session_id} running")
        while True:
            generation, command = await self._queue.get()
            if command is _CLOSE:
                break
            if generation != self._generation:
                logger.info(f"Dropping stale {type(command).__name__} (generation {generation})")
                continue
            await self._apply(command)
        logger.info(f"Voice session {self._session.session_id} stopped")

    async def wait_for_state(self, *states: DialogueState, timeout: float = 5.0) -> DialogueState:
        """
        Wait until the session is in one of states.

        Raises:
            asyncio.TimeoutError: If the state is not reached in time
        """
        await self.wait_until(lambda: self.state in states, timeout)
        return self.state

    async def wait_until(self, predicate, timeout: float = 5.0) -> None:
        """Wait until predicate() holds after some handled command."""
        async with self._changed:
            await asyncio.wait_for(self._changed.wait_for(predicate), timeout)

    async def close(self) -> None:
        """Stop I/O, cancel background work and end run()."""
        self._generation += 1
        self._stop_io()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._queue.put_nowait((self._generation, _CLOSE))

    def _post(self, command, generation: Optional[int] = None) -> None:
        self._queue.put_nowait((self._generation if generation is None else generation, command))

    async def _apply(self, command: Command) -> None:
        result = self.manager.handle(self._session, command)
        if isinstance(result, IllegalCommand):
            self.last_illegal = result
            return

        self._session = result.session
        self.last_result = result
        self.outputs.append(result.system_output)
        if self.persistence is not None:
            try:
                self.persistence.save_turn(result, type(command).__name__)
            except OSError as e:
                logger.error(f"Could not write turn log: {e}")

        async with self._changed:
            self._changed.notify_all()
        self._react(result)

    def _react(self, result: TurnResult) -> None:
        """Start the side effect the new state needs."""
        state = result.state
        generation = self._generation

        if state is DialogueState.RECORDING:
            self._listen_task = self._spawn(self._listen(generation, prompt=None, answering=False))
        elif state is DialogueState.SLOT_FILLING:
            self._listen_task = self._spawn(
                self._listen(generation, prompt=result.system_output, answering=True)
            )
        elif state is DialogueState.SAVING:
            self._spawn(self._execute(generation, result.pending_execution))
        elif state in _SPOKEN_STATES and result.system_output:
            self._spawn(self._speak(result.system_output))

    # =========================================================================
    # Side effects
    # =========================================================================

    async def _listen(self, generation: int, prompt: Optional[str], answering: bool) -> None:
        try:
            if prompt:
                await self.synthesis.speak(prompt)
            transcript = await self.capture.listen()
        except CapabilityUnavailable as e:
            self._post(CaptureFailed(str(e), unavailable=True), generation)
            return
        except CaptureError as e:
            self._post(CaptureFailed(str(e)), generation)
            return
        except Exception as e:
            logger.error(f"Speech capture crashed: {e}", exc_info=True)
            self._post(CaptureFailed(str(e) or type(e).__name__), generation)
            return

        if answering:
            self._post(CustomSlotInput(transcript.text), generation)
        else:
            self._post(CaptureCompleted(transcript), generation)

    async def _speak(self, text: str) -> None:
        try:
            await self.synthesis.speak(text)
        except CapabilityUnavailable as e:
            logger.warning(f"Speech synthesis unavailable, output shown as text only: {e}")

    async def _execute(self, generation: int, plan: Optional[Plan]) -> None:
        if generation != self._generation:
            logger.info("Save skipped: session was cancelled")
            return
        try:
            outcome = await asyncio.to_thread(self.executor.execute, plan)
        except ExecutionFailure as e:
            self._post(SaveFailed(str(e)), generation)
            return
        except Exception as e:
            logger.error(f"Executor crashed while saving: {e}", exc_info=True)
            self._post(SaveFailed(str(e) or type(e).__name__), generation)
            return
        self.last_execution = outcome
        self._post(SaveSucceeded(outcome.to_dict()), generation)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_listen(self) -> None:
        if self._listen_task is not None and not self._listen_task.done():
            self._listen_task.cancel()
            self.capture.stop()
        self._listen_task = None

    def _stop_io(self) -> None:
        self._cancel_listen()
        self.synthesis.stop()
