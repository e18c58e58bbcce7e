from typing import List, Optional

from soundsteps.config import RewardTier
from soundsteps.services.quiz import score_percentage


def reward_tier(score: int, total: int, tiers: List[RewardTier]) -> Optional[RewardTier]:
    """
    Highest tier the percentage reaches, or None below every threshold.

    None is a normal outcome (no reward earned), not an error.
    """
    if total <= 0:
        return None
    pct = score_percentage(score, total)
    for tier in sorted(tiers, key=lambda t: t.min_percentage, reverse=True):
        if pct >= tier.min_percentage:
            return tier
    return None


def reward_amount(
    score: int,
    total: int,
    tiers: List[RewardTier],
    recipient: str = "learner"
) -> int:
    """Airtime amount for a learner or caregiver, 0 when no tier applies."""
    tier = reward_tier(score, total, tiers)
    if tier is None:
        return 0
    return tier.learner_amount if recipient == "learner" else tier.caregiver_amount
