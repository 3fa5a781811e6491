"""Score-to-reward preview.

Mirrors the ledger's payout table so the client can show potential winnings
before a claim. The ledger recomputes the reward at claim time and its number
is the one that gets paid.
"""

from decimal import Decimal

PASSING_SCORE = 60

# (minimum score, multiplier), highest tier first
REWARD_TIERS = (
    (90, 5),
    (80, 4),
    (70, 3),
    (60, 2),
)


def _check_score(score: int) -> None:
    if isinstance(score, bool) or not 0 <= score <= 100:
        raise ValueError(f"Score must be between 0 and 100, got {score!r}")


def reward_multiplier(score: int) -> int:
    _check_score(score)
    for minimum, multiplier in REWARD_TIERS:
        if score >= minimum:
            return multiplier
    return 0


def calculate_reward(score: int, bet: int | Decimal) -> int | Decimal:
    """multiplier x bet, in the same unit as bet (base units or Decimal)."""
    if bet < 0:
        raise ValueError(f"Bet must not be negative, got {bet!r}")
    return reward_multiplier(score) * bet


def can_claim(score: int) -> bool:
    _check_score(score)
    return score >= PASSING_SCORE
