"""
Injected speech capabilities.

The dialogue runtime never reaches a recogniser or a speaker through
global state: hosts pass objects satisfying these protocols to
VoiceSession at construction.
"""

from typing import Protocol

from voiceplanner.contracts import Transcript


class CapabilityUnavailable(RuntimeError):
    """Speech capture or synthesis is not available on this host."""


class CaptureError(RuntimeError):
    """Capture ran but produced no usable transcript (no speech, aborted, network)."""


class SpeechCapture(Protocol):
    """Adapter interface for German speech recognition."""

    async def listen(self) -> Transcript:
        """
        Capture one utterance.

        Resolves once the recogniser has a final result.

        Raises:
            CapabilityUnavailable: No recogniser on this host
            CaptureError: Recognition failed
        """
        ...

    def stop(self) -> None:
        """Abort an in-flight capture."""
        ...


class SpeechSynthesis(Protocol):
    """Adapter interface for text-to-speech playback."""

    async def speak(self, text: str) -> None:
        """Resolves when playback has finished."""
        ...

    def stop(self) -> None:
        """Abort playback."""
        ...


class SilentSynthesis:
    """SpeechSynthesis that says nothing (text-only hosts)."""

    async def speak(self, text: str) -> None:
        return None

    def stop(self) -> None:
        return None
