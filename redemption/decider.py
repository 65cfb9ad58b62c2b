import random
from typing import Optional, Sequence

from .config import DEFAULT_SYMBOLS
from .models import Decision


class OutcomeDecider:
    """Decides win or loss for one redemption and picks the reel symbols.

    Holds no state beyond its random source, so the same decider can be shared
    by concurrent requests. Tests pass a seeded or scripted ``random.Random``.
    """

    def __init__(self, rng: Optional[random.Random] = None, symbols: Sequence[str] = DEFAULT_SYMBOLS):
        if len(set(symbols)) < 2:
            raise ValueError("At least two distinct symbols are required to display a loss")
        self.rng = rng or random.Random()
        self.symbols = tuple(symbols)

    def decide(self, remaining: int, probability: float) -> Decision:
        if remaining <= 0 or probability <= 0:
            return Decision(won=False)
        if self.rng.random() < probability:
            return Decision(won=True, reward_symbol=self.rng.choice(self.symbols))
        return Decision(won=False)

    def display_symbols(self, decision: Decision) -> list[str]:
        if decision.won:
            return [decision.reward_symbol] * 3
        # Two matching reels are a valid loss; only three of a kind is redrawn.
        while True:
            reels = [self.rng.choice(self.symbols) for _ in range(3)]
            if not reels[0] == reels[1] == reels[2]:
                return reels
