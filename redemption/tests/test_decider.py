"""
Unit Tests for the Outcome Decider

Tests cover:
1. Win/lose boundaries (probability and remaining prizes)
2. Reward symbol selection
3. Reel display for wins and losses
"""

import random

import pytest

from redemption.decider import OutcomeDecider
from redemption.models import Decision


SYMBOLS = ("A", "B", "C")


class ScriptedRandom(random.Random):
    """Random source returning pre-set draws and choices."""

    def __init__(self, draws=(), choices=()):
        super().__init__(0)
        self.draws = list(draws)
        self.choices = list(choices)

    def random(self):
        return self.draws.pop(0)

    def choice(self, seq):
        if self.choices:
            return self.choices.pop(0)
        return super().choice(seq)


class TestDecide:
    """Tests for the win/lose decision."""

    def test_zero_probability_never_wins(self):
        """A probability of 0 loses even on the lowest possible draw."""
        rng = ScriptedRandom(draws=[0.0])
        decider = OutcomeDecider(rng=rng, symbols=SYMBOLS)

        decision = decider.decide(remaining=10, probability=0.0)

        assert decision.won is False
        assert decision.reward_symbol is None
        # No draw consumed
        assert rng.draws == [0.0]

    def test_empty_pool_never_wins(self):
        """No prizes left means a loss even with probability 1."""
        rng = ScriptedRandom(draws=[0.0])
        decider = OutcomeDecider(rng=rng, symbols=SYMBOLS)

        decision = decider.decide(remaining=0, probability=1.0)

        assert decision.won is False
        assert rng.draws == [0.0]

    def test_certain_win(self):
        decider = OutcomeDecider(rng=random.Random(42), symbols=SYMBOLS)

        for _ in range(50):
            decision = decider.decide(remaining=1, probability=1.0)
            assert decision.won is True
            assert decision.reward_symbol in SYMBOLS

    def test_draw_must_be_strictly_below_probability(self):
        """A draw equal to the probability is a loss."""
        decider = OutcomeDecider(rng=ScriptedRandom(draws=[0.5, 0.49], choices=["B"]), symbols=SYMBOLS)

        assert decider.decide(remaining=5, probability=0.5).won is False

        decision = decider.decide(remaining=5, probability=0.5)
        assert decision.won is True
        assert decision.reward_symbol == "B"

    def test_requires_two_distinct_symbols(self):
        with pytest.raises(ValueError):
            OutcomeDecider(symbols=("A", "A"))


class TestDisplaySymbols:
    """Tests for the three reels shown to the player."""

    def test_win_shows_three_reward_symbols(self):
        decider = OutcomeDecider(rng=random.Random(1), symbols=SYMBOLS)

        reels = decider.display_symbols(Decision(won=True, reward_symbol="C"))

        assert reels == ["C", "C", "C"]

    def test_loss_redraws_three_of_a_kind(self):
        """A loss that happens to draw three identical symbols is drawn again."""
        rng = ScriptedRandom(choices=["A", "A", "A", "B", "B", "A"])
        decider = OutcomeDecider(rng=rng, symbols=SYMBOLS)

        reels = decider.display_symbols(Decision(won=False))

        assert reels == ["B", "B", "A"]
        assert rng.choices == []

    def test_loss_never_shows_three_of_a_kind(self):
        decider = OutcomeDecider(rng=random.Random(7), symbols=("X", "Y"))

        for _ in range(200):
            reels = decider.display_symbols(Decision(won=False))
            assert len(reels) == 3
            assert len(set(reels)) > 1
