"""
Command types and session envelope for DialogueManager control flow.

Commands are the ONLY public interface to DialogueManager.
No direct method calls. No state mutation. Commands only.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from voiceplanner.contracts import Intent, ParsedSlots, SlotName, Transcript
from voiceplanner.plans import Plan, plan_to_dict


class DialogueState(str, Enum):
    """Dialogue lifecycle states."""
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    REVIEWING = "reviewing"
    SLOT_FILLING = "slot_filling"
    DISAMBIGUATING = "disambiguating"
    CONFIRMING = "confirming"
    SAVING = "saving"
    DONE = "done"


@dataclass(frozen=True)
class DialogueSession:
    """
    Immutable snapshot of one dialogue.

    Rules:
    - Only DialogueManager produces new snapshots (via evolve())
    - Immutable after creation; retry_counts is copied on every evolve
    - Serializable to JSON for the session log

    Attributes:
        session_id: Session identifier
        state: Current lifecycle state
        transcripts: Every transcript captured in this session
        current_plan: Plan shown to the user
        retry_counts: Failed answers per slot name
        collected: Slots collected so far
        intent: Intent the session is working on
        base_confidence: Confidence of that intent
        editing: True after "change" until the next save
        last_error: Last execution error, surfaced in reviewing
        approved_plan: Plan handed to the executor (saving only)
        turn_count: Number of handled commands
    """
    session_id: str
    state: DialogueState = DialogueState.IDLE
    transcripts: Tuple[Transcript, ...] = ()
    current_plan: Optional[Plan] = None
    retry_counts: Dict[str, int] = field(default_factory=dict)
    collected: ParsedSlots = field(default_factory=ParsedSlots)
    intent: Optional[Intent] = None
    base_confidence: float = 0.0
    editing: bool = False
    last_error: Optional[str] = None
    approved_plan: Optional[Plan] = None
    turn_count: int = 0

    def evolve(self, **changes: Any) -> "DialogueSession":
        """Copy with changes; retry_counts never shared between snapshots."""
        if "retry_counts" not in changes:
            changes["retry_counts"] = dict(self.retry_counts)
        return replace(self, **changes)

    def retry_count(self, slot: SlotName) -> int:
        return self.retry_counts.get(slot.value, 0)

    def to_json(self) -> dict:
        """
        Serialize to JSON-safe dict.

        Returns:
            dict: Session snapshot with plans flattened via plan_to_dict
        """
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "transcripts": [
                {"text": t.text, "locale": t.locale, "confidence": t.confidence}
                for t in self.transcripts
            ],
            "current_plan": plan_to_dict(self.current_plan) if self.current_plan else None,
            "retry_counts": dict(self.retry_counts),
            "collected": self.collected.to_dict(),
            "intent": self.intent.to_dict() if self.intent else None,
            "base_confidence": self.base_confidence,
            "editing": self.editing,
            "last_error": self.last_error,
            "approved_plan": plan_to_dict(self.approved_plan) if self.approved_plan else None,
            "turn_count": self.turn_count,
        }


# Command types

@dataclass(frozen=True)
class StartCapture:
    """
    Begin listening.

    Valid in idle and done; done starts a fresh session.
    """
    pass


@dataclass(frozen=True)
class CaptureCompleted:
    """Speech capture resolved to a transcript. Runs parse + classify + plan."""
    transcript: Transcript


@dataclass(frozen=True)
class CaptureFailed:
    """
    Speech capture (or synthesis) failed.

    unavailable=True marks a missing capability rather than a failed
    recognition; both end the session in idle.
    """
    error: str
    unavailable: bool = False


@dataclass(frozen=True)
class SelectOption:
    """User picked one of the two disambiguation options."""
    intent: Intent


@dataclass(frozen=True)
class CustomSlotInput:
    """Answer to a slot prompt (free text or a quick-reply value), or an edit."""
    value: str


@dataclass(frozen=True)
class Save:
    """Explicit save action from reviewing."""
    pass


@dataclass(frozen=True)
class Confirm:
    """User confirmed the pending plan."""
    pass


@dataclass(frozen=True)
class Change:
    """User wants to edit before saving."""
    pass


@dataclass(frozen=True)
class Cancel:
    """Abort from any state."""
    reason: str = ""


@dataclass(frozen=True)
class SaveSucceeded:
    """Executor finished the approved plan."""
    result: Any = None


@dataclass(frozen=True)
class SaveFailed:
    """Executor rejected the approved plan; error is shown verbatim."""
    error: str


# Command union type for type hints
Command = (
    StartCapture | CaptureCompleted | CaptureFailed | SelectOption | CustomSlotInput
    | Save | Confirm | Change | Cancel | SaveSucceeded | SaveFailed
)
