"""
Noise guard for transcripts.

Speech recognisers emit hesitations, greetings and single stray words
when the microphone opens. Those must not reach intent scoring, where a
lucky keyword could turn "äh ok" into a diary write.
"""

import re
from typing import Optional

from voiceplanner.utils.helpers import fold_text
from voiceplanner.utils.lexicon import NOISE_WORDS, NUMBER_TOKEN, to_number

_WORD = re.compile(r"[\wäöüß]+")
_BARE_NUMBER = re.compile(rf"^{NUMBER_TOKEN}$")


def bare_pain_value(text: str) -> Optional[int]:
    """
    Return N when the whole utterance is a single number 0-10.

    Examples:
        >>> bare_pain_value('7')
        7
        >>> bare_pain_value('acht.')
        8
        >>> bare_pain_value('17')
    """
    words = _WORD.findall(fold_text(text))
    if len(words) != 1 or not _BARE_NUMBER.match(words[0]):
        return None
    value = to_number(words[0])
    return value if value is not None and 0 <= value <= 10 else None


def is_noise(text: str) -> bool:
    """
    Decide whether an utterance carries no actionable content.

    Noise:
    - empty or punctuation-only text
    - only filler/greeting words ("äh", "ok", "hallo")
    - a single word shorter than three letters

    A bare pain number is never noise.
    """
    words = _WORD.findall(fold_text(text))
    if not words:
        return True
    if bare_pain_value(text) is not None:
        return False
    if all(word in NOISE_WORDS for word in words):
        return True
    return len(words) == 1 and len(words[0]) < 3
