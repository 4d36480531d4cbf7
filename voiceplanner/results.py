"""
Result types returned by DialogueManager.handle()

These are the ONLY return types from the command handler.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from voiceplanner.commands import DialogueSession, DialogueState
from voiceplanner.plans import Plan


class ErrorKind(str, Enum):
    """Failure categories recorded in TurnResult.debug['error_kind']."""
    PARSE_FAILURE = "parse_failure"
    CLASSIFICATION_FLOOR = "classification_floor"
    SLOT_RETRY_EXHAUSTED = "slot_retry_exhausted"
    EXECUTION_FAILURE = "execution_failure"
    CAPABILITY_UNAVAILABLE = "capability_unavailable"


@dataclass(frozen=True)
class TurnResult:
    """
    Successful command processing result.

    Attributes:
        session: New session snapshot (pass to the next handle() call)
        system_output: Text to show or speak to the user
        transitions: (from, to) pairs taken while handling the command
        pending_execution: Plan the host must hand to the executor
            (set exactly when the session entered saving)
        debug: Diagnostics (slots, candidates, error_kind, ...)
    """
    session: DialogueSession
    system_output: str
    transitions: Tuple[Tuple[DialogueState, DialogueState], ...] = ()
    pending_execution: Optional[Plan] = None
    debug: Dict[str, Any] = field(default_factory=dict)

    @property
    def state(self) -> DialogueState:
        return self.session.state

    @property
    def plan(self) -> Optional[Plan]:
        return self.session.current_plan


@dataclass(frozen=True)
class IllegalCommand:
    """
    Command rejected by DM (invalid lifecycle transition).

    Examples:
    - Confirm while reviewing a low-risk plan
    - Save while disambiguating
    - SelectOption with an intent that was not offered

    The session is unchanged; the caller keeps its previous snapshot.

    Attributes:
        reason: Human-readable explanation
        command_type: Name of rejected command type
        state: State the session was in
    """
    reason: str
    command_type: str
    state: DialogueState
