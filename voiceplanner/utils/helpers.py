"""
Utility helpers for the voice planner

Simple utility functions for ID generation and text normalisation.
"""

import re
import unicodedata
import uuid
from datetime import date, time
from typing import Optional

_WHITESPACE = re.compile(r"\s+")


def generate_session_id(short=True):
    """
    Generate unique session identifier

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Session ID

    Examples:
        >>> generate_session_id()
        'a3f7e2b9'
    """
    full_id = uuid.uuid4().hex
    return full_id[:8] if short else full_id


def normalize_text(text: Optional[str]) -> str:
    """NFC-normalise and collapse whitespace, keeping case."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFC", text)).strip()


def fold_text(text: Optional[str]) -> str:
    """
    Normalise a transcript for matching.

    Lowercases, applies NFC (so 'ö' typed as o + diaeresis matches the
    lexicon) and collapses whitespace. Callers that need offsets fold first
    and keep working on the folded string.

    Examples:
        >>> fold_text('  Lösche   den Eintrag ')
        'lösche den eintrag'
    """
    return normalize_text(text).lower()


def format_when(day: Optional[date], clock: Optional[time], expression: Optional[str] = None) -> str:
    """
    Human-readable event time for summaries.

    Examples:
        >>> format_when(date(2024, 3, 14), time(17, 0))
        '14.03.2024 17:00'
        >>> format_when(None, None, 'jetzt')
        'jetzt'
    """
    if day is not None and clock is not None:
        return f"{day:%d.%m.%Y} {clock:%H:%M}"
    if day is not None:
        return f"{day:%d.%m.%Y}"
    if clock is not None:
        return f"{clock:%H:%M}"
    return expression or "jetzt"
