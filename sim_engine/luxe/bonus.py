"""
LUXE — Bonus State Machine

    NONE ──(3/4/5+ scatters or bonus buy)──▶ TIER1 | TIER2 | TIER3 ──(0 spins)──▶ NONE

Tiers never switch into one another. Each bonus spin decrements the
remaining count, adds the spin's payout to the run total and may retrigger
(+4 spins for 3+ scatters, +2 for exactly 2). max_free_spins limits how far
a retrigger can raise the count; it never trims an entry award. When the
count reaches zero the run total is paid out once and the state resets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable

from config.slot_schema import GameConfig
from sim_engine.luxe.grid import draw_frame
from sim_engine.luxe.rng import RandomSource
from sim_engine.luxe.symbols import BonusMode, StickyFrame, normalize_sticky

logger = logging.getLogger("luxe.bonus")


@dataclass(frozen=True)
class BonusState:
    mode: BonusMode = BonusMode.NONE
    spins_remaining: int = 0
    accumulated_win: float = 0.0
    sticky_frames: tuple[StickyFrame, ...] = ()
    bet_amount: float = 0.0
    spins_played: int = 0
    version: int = 0

    @property
    def active(self) -> bool:
        return self.mode.is_bonus

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "spins_remaining": self.spins_remaining,
            "accumulated_win": self.accumulated_win,
            "sticky_frames": [f.to_dict() for f in self.sticky_frames],
            "bet_amount": self.bet_amount,
            "spins_played": self.spins_played,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BonusState":
        return cls(
            mode=BonusMode(data.get("mode", "none")),
            spins_remaining=int(data.get("spins_remaining", 0)),
            accumulated_win=float(data.get("accumulated_win", 0.0)),
            sticky_frames=normalize_sticky(
                StickyFrame.from_dict(f) for f in data.get("sticky_frames", [])),
            bet_amount=float(data.get("bet_amount", 0.0)),
            spins_played=int(data.get("spins_played", 0)),
            version=int(data.get("version", 0)),
        )


def inactive(version: int = 0) -> BonusState:
    return BonusState(version=version)


@dataclass(frozen=True)
class BonusStep:
    state: BonusState
    retrigger_spins: int = 0
    completed: bool = False
    total_win: float = 0.0


def tier_for_scatter_count(scatter_count: int) -> BonusMode:
    if scatter_count >= 5:
        return BonusMode.TIER3
    if scatter_count == 4:
        return BonusMode.TIER2
    if scatter_count == 3:
        return BonusMode.TIER1
    return BonusMode.NONE


def retrigger_spins(scatter_count: int, config: GameConfig) -> int:
    """Extra spins for the highest threshold reached."""
    reached = [t for t in config.retrigger_spins if scatter_count >= t]
    return config.retrigger_spins[max(reached)] if reached else 0


def _free_cells(config: GameConfig, taken: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    taken = set(taken)
    return [(r, c) for r in range(config.rows) for c in range(config.cols) if (r, c) not in taken]


def place_sticky_frames(count: int, mode: BonusMode, rng: RandomSource, config: GameConfig,
                        existing: Iterable[StickyFrame] = ()) -> tuple[StickyFrame, ...]:
    """Add `count` frames at distinct random cells not already framed."""
    frames = list(existing)
    free = _free_cells(config, (f.coord for f in frames))
    for _ in range(min(count, len(free))):
        row, col = free.pop(rng.randbelow(len(free)))
        frames.append(StickyFrame.at(row, col, draw_frame(rng, config, mode)))
    return normalize_sticky(frames)


def enter_bonus(mode: BonusMode, bet: float, rng: RandomSource, config: GameConfig,
                version: int = 0) -> BonusState:
    if not mode.is_bonus:
        raise ValueError("enter_bonus() needs a bonus tier")
    rules = config.bonus_tier(mode.value)
    sticky = place_sticky_frames(rules.entry_sticky_frames, mode, rng, config)
    logger.info(f"Bonus entered: {mode.display_name} spins={rules.free_spins} "
                f"sticky={len(sticky)} bet={bet}")
    return BonusState(
        mode=mode,
        spins_remaining=rules.free_spins,
        sticky_frames=sticky,
        bet_amount=bet,
        version=version,
    )


def advance(state: BonusState, spin_payout: float, scatter_count: int,
            sticky_frames: Iterable[StickyFrame], rng: RandomSource,
            config: GameConfig) -> BonusStep:
    """Apply one evaluated bonus spin to the run."""
    if not state.active or state.spins_remaining <= 0:
        raise ValueError("advance() called without an active bonus run")

    remaining = state.spins_remaining - 1
    extra = retrigger_spins(scatter_count, config)
    sticky = normalize_sticky(sticky_frames)
    granted = extra
    if extra:
        # The cap bounds growth only; a retrigger never takes spins away.
        if config.max_free_spins is not None:
            granted = max(0, min(extra, config.max_free_spins - remaining))
        remaining += granted
        rules = config.bonus_tier(state.mode.value)
        if rules.sticky_on_retrigger:
            sticky = place_sticky_frames(rules.sticky_on_retrigger, state.mode, rng, config, sticky)
        logger.info(f"Bonus retrigger: {state.mode.display_name} +{granted} spins "
                    f"(scatters={scatter_count}) remaining={remaining}")

    accumulated = state.accumulated_win + spin_payout
    version = state.version + 1

    if remaining <= 0:
        logger.info(f"Bonus complete: {state.mode.display_name} "
                    f"spins={state.spins_played + 1} total_win={accumulated:.2f}")
        return BonusStep(state=inactive(version), retrigger_spins=granted,
                         completed=True, total_win=accumulated)

    return BonusStep(
        state=replace(
            state,
            spins_remaining=remaining,
            accumulated_win=accumulated,
            sticky_frames=sticky,
            spins_played=state.spins_played + 1,
            version=version,
        ),
        retrigger_spins=granted,
    )


def pick_regular_buy_tier(rng: RandomSource, config: GameConfig) -> BonusMode:
    weights = config.bonus_buy.regular_tier_weights
    modes = sorted(weights)
    return BonusMode(rng.weighted_choice(modes, [weights[m] for m in modes]))


def buy_cost(bet: float, bonus_type: str, config: GameConfig) -> float:
    if bonus_type == "super":
        return bet * config.bonus_buy.super_cost_multiple
    if bonus_type == "regular":
        return bet * config.bonus_buy.regular_cost_multiple
    raise ValueError(f"Unknown bonus type: {bonus_type}")


def buy_mode(bonus_type: str, rng: RandomSource, config: GameConfig) -> BonusMode:
    if bonus_type == "super":
        return BonusMode.TIER3
    if bonus_type == "regular":
        return pick_regular_buy_tier(rng, config)
    raise ValueError(f"Unknown bonus type: {bonus_type}")
