"""
Disambiguator - decide whether the top two intents are too close to call

Responsibilities:
- Commit to the top candidate when it clearly leads (or is very confident)
- Otherwise produce a DisambiguationPlan offering exactly the top two

Design principles:
- Stateless, deterministic
- A user's pick is not re-classified: the dialogue manager routes the
  chosen intent straight to the plan builder
"""

import logging
from typing import Optional, Sequence, Union

from voiceplanner.config import PlannerConfig
from voiceplanner.contracts import Candidate
from voiceplanner.plans import DisambiguationPlan

logger = logging.getLogger(__name__)


class Disambiguator:
    """Applies the margin/ceiling rule to sorted candidates."""

    def __init__(self, config: Optional[PlannerConfig] = None):
        self.config = config or PlannerConfig()
        self.margin = self.config.disambiguation_margin
        self.ceiling = self.config.disambiguation_ceiling

    def needs_disambiguation(self, candidates: Sequence[Candidate]) -> bool:
        """
        True when top - second < margin and top < ceiling.

        Args:
            candidates: Candidates sorted descending by score
        """
        if len(candidates) < 2:
            return False
        top, second = candidates[0], candidates[1]
        gap = round(top.score - second.score, 4)
        return gap < self.margin and top.score < self.ceiling

    def resolve(
        self,
        candidates: Sequence[Candidate],
        transcript: str = "",
    ) -> Union[Candidate, DisambiguationPlan]:
        """
        Pick the intent to build, or ask the user.

        Args:
            candidates: Classifier output, sorted descending (non-empty)
            transcript: Utterance text, carried on the plan for display

        Returns:
            Candidate: Top candidate when it can be committed directly
            DisambiguationPlan: Top two options when they are too close

        Raises:
            ValueError: If candidates is empty
        """
        if not candidates:
            raise ValueError("resolve() needs at least one candidate")

        if not self.needs_disambiguation(candidates):
            return candidates[0]

        top, second = candidates[0], candidates[1]
        logger.info(
            f"Disambiguation needed: {top.intent.key}={top.score} vs "
            f"{second.intent.key}={second.score}"
        )
        return DisambiguationPlan(options=(top, second), transcript=transcript, confidence=top.score)
