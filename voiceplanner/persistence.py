"""
Voice session log.

One JSON file per handled command, never overwritten. Gives an audit
trail of what was heard, planned and approved.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from voiceplanner.results import TurnResult

logger = logging.getLogger(__name__)


class SessionPersistence:
    """
    Append-only turn log.

    Layout:
        outputs/voice_sessions/SESSION-a3f7e2b9/
            SESSION-a3f7e2b9_TURN-001.json
            SESSION-a3f7e2b9_TURN-002.json
            ...
    """

    def __init__(self, base_dir: str | Path = "outputs/voice_sessions"):
        """
        Args:
            base_dir: Directory holding one sub-directory per session
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"SessionPersistence initialized: {self.base_dir}")

    def _session_dir(self, session_id: str) -> Path:
        return self.base_dir / f"SESSION-{session_id}"

    def save_turn(self, result: TurnResult, command: Optional[str] = None) -> str:
        """
        Write one turn record.

        Args:
            result: TurnResult of the handled command
            command: Name of the command that produced it

        Returns:
            str: Absolute path of the written file

        Raises:
            FileExistsError: If this turn was already written (double submit)
        """
        session = result.session
        session_dir = self._session_dir(session.session_id)
        session_dir.mkdir(exist_ok=True)

        filepath = session_dir / f"SESSION-{session.session_id}_TURN-{session.turn_count:03d}.json"
        if filepath.exists():
            raise FileExistsError(
                f"Turn file already exists: {filepath}. "
                f"Turn {session.turn_count} was submitted twice."
            )

        record = {
            "command": command,
            "system_output": result.system_output,
            "transitions": [[a.value, b.value] for a, b in result.transitions],
            "pending_execution": result.pending_execution is not None,
            "debug": result.debug,
            "session": session.to_json(),
        }
        with open(filepath, 'x', encoding='utf-8') as f:
            json.dump(record, f, indent=2, ensure_ascii=False, default=str)

        logger.info(f"Saved turn {session.turn_count} for session {session.session_id}")
        return str(filepath.absolute())

    def load_latest_turn(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Latest turn record of a session.

        Returns:
            dict as written by save_turn(), None if the session has no turns
        """
        turn_files = self._turn_files(session_id)
        if not turn_files:
            logger.warning(f"No turn files found for session {session_id}")
            return None

        latest = max(turn_files, key=lambda p: p.name)
        with open(latest, 'r', encoding='utf-8') as f:
            return json.load(f)

    def session_exists(self, session_id: str) -> bool:
        return bool(self._turn_files(session_id))

    def get_turn_count(self, session_id: str) -> int:
        """Number of turn files written for a session (0 if unknown)."""
        return len(self._turn_files(session_id))

    def _turn_files(self, session_id: str):
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return []
        return list(session_dir.glob(f"SESSION-{session_id}_TURN-*.json"))
