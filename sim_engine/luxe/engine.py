"""
LUXE — Slot Outcome Engine

One spin is one indivisible call: grid generation, payline evaluation,
frame resolution and the bonus transition all happen inside spin(), which
is a pure function of (bonus state, bet, RNG draws). Reel-stop animation and
any other sequencing belong to the consumer.

The engine never touches balances. Each result says how much the ledger
should debit (`cost`) and credit (`payout_due`); during a bonus run the
credit is zero until the final spin pays the whole run total.

Usage:
    from sim_engine.luxe import LuxeEngine, SeededRandomSource
    engine = LuxeEngine()
    result = engine.spin(bet=1.0, rng=SeededRandomSource(7))
    result.outcome.payout, result.state.mode
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from config.slot_schema import GameConfig, default_game_config
from sim_engine.luxe.bonus import (
    BonusState, advance, buy_cost, buy_mode, enter_bonus, inactive,
    tier_for_scatter_count,
)
from sim_engine.luxe.errors import BonusStateMismatch, InvalidBetAmount, InvalidBonusType
from sim_engine.luxe.frames import JackpotHit, apply_frames
from sim_engine.luxe.grid import generate_grid
from sim_engine.luxe.paylines import LineWin, evaluate
from sim_engine.luxe.rng import RandomSource
from sim_engine.luxe.symbols import BonusMode, Grid, StickyFrame, normalize_sticky

logger = logging.getLogger("luxe.engine")

BET_TOLERANCE = 1e-9
CENT_TOLERANCE = 1e-6
WIN_TOLERANCE = 1e-6


@dataclass(frozen=True)
class SpinOutcome:
    mode: BonusMode
    bet_amount: float
    grid: Optional[Grid] = None
    winning_cells: tuple[tuple[int, int], ...] = ()
    winning_paylines: tuple[LineWin, ...] = ()
    raw_payout: float = 0.0
    payout: float = 0.0
    jackpots_hit: tuple[JackpotHit, ...] = ()
    scatter_count: int = 0
    scatter_positions: tuple[tuple[int, int], ...] = ()
    bonus_trigger: Optional[BonusMode] = None
    free_spins_awarded: int = 0
    retrigger_spins: int = 0
    updated_sticky_frames: tuple[StickyFrame, ...] = ()
    spins_remaining: int = 0
    bonus_complete: bool = False
    bonus_total_win: float = 0.0
    cost: float = 0.0
    payout_due: float = 0.0
    capped: bool = False
    state_version: int = 0
    nonce: Optional[int] = None
    combined_hash: Optional[str] = None
    new_balance: Optional[float] = None

    @property
    def is_bonus_spin(self) -> bool:
        return self.mode.is_bonus

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "bet_amount": self.bet_amount,
            "grid": self.grid.to_list() if self.grid is not None else None,
            "winning_cells": [list(c) for c in self.winning_cells],
            "winning_paylines": [w.to_dict() for w in self.winning_paylines],
            "raw_payout": self.raw_payout,
            "payout": self.payout,
            "jackpots_hit": [j.to_dict() for j in self.jackpots_hit],
            "scatter_count": self.scatter_count,
            "scatter_positions": [list(p) for p in self.scatter_positions],
            "bonus_trigger": self.bonus_trigger.value if self.bonus_trigger else None,
            "free_spins_awarded": self.free_spins_awarded,
            "retrigger_spins": self.retrigger_spins,
            "updated_sticky_frames": [f.to_dict() for f in self.updated_sticky_frames],
            "spins_remaining": self.spins_remaining,
            "bonus_complete": self.bonus_complete,
            "bonus_total_win": self.bonus_total_win,
            "cost": self.cost,
            "payout_due": self.payout_due,
            "capped": self.capped,
            "state_version": self.state_version,
            "nonce": self.nonce,
            "combined_hash": self.combined_hash,
            "new_balance": self.new_balance,
        }


@dataclass(frozen=True)
class SpinResult:
    outcome: SpinOutcome
    state: BonusState = field(default_factory=BonusState)


def check_resume_context(state: BonusState, is_bonus_spin: bool, bet: float,
                         sticky_frames: Optional[Iterable[StickyFrame]] = None,
                         spins_remaining: Optional[int] = None,
                         accumulated_win: Optional[float] = None,
                         version: Optional[int] = None) -> None:
    """Reject a request whose bonus context diverges from `state`.

    Context the caller leaves as None is not compared.
    """
    if state.active and not is_bonus_spin:
        raise BonusStateMismatch(
            f"{state.mode.display_name} bonus in progress "
            f"({state.spins_remaining} spins left); base spin rejected",
            authoritative=state.to_dict())
    if is_bonus_spin and not state.active:
        raise BonusStateMismatch("No bonus run in progress", authoritative=state.to_dict())
    if not state.active:
        return
    if abs(bet - state.bet_amount) > BET_TOLERANCE:
        raise BonusStateMismatch(
            f"Bet {bet} does not match bonus run bet {state.bet_amount}",
            authoritative=state.to_dict())
    if sticky_frames is not None and normalize_sticky(sticky_frames) != state.sticky_frames:
        raise BonusStateMismatch("Sticky frames do not match the bonus run",
                                 authoritative=state.to_dict())
    if version is not None and version != state.version:
        raise BonusStateMismatch(
            f"Stale bonus state: version {version} != {state.version}",
            authoritative=state.to_dict())
    if spins_remaining is not None and spins_remaining != state.spins_remaining:
        raise BonusStateMismatch(
            f"Spins remaining {spins_remaining} != {state.spins_remaining}",
            authoritative=state.to_dict())
    if accumulated_win is not None and abs(accumulated_win - state.accumulated_win) > WIN_TOLERANCE:
        raise BonusStateMismatch(
            f"Accumulated win {accumulated_win} != {state.accumulated_win}",
            authoritative=state.to_dict())


class LuxeEngine:
    """Authoritative outcome engine for The Luxe."""

    def __init__(self, config: Optional[GameConfig] = None):
        self.config = config or default_game_config()

    def validate_bet(self, bet: float) -> float:
        try:
            bet = float(bet)
        except (TypeError, ValueError):
            raise InvalidBetAmount(f"Bet must be a number, got {bet!r}")
        if not bet > 0 or bet == float("inf"):
            raise InvalidBetAmount("Bet must be positive")
        if bet < self.config.min_bet - BET_TOLERANCE or bet > self.config.max_bet + BET_TOLERANCE:
            raise InvalidBetAmount(
                f"Bet {bet} outside [{self.config.min_bet}, {self.config.max_bet}]")
        cents = round(bet * 100)
        if abs(bet * 100 - cents) > CENT_TOLERANCE:
            raise InvalidBetAmount(f"Bet {bet} has more than two decimal places")
        return cents / 100

    def spin(self, bet: float, rng: RandomSource,
             state: Optional[BonusState] = None,
             is_bonus_spin: Optional[bool] = None,
             sticky_frames: Optional[Iterable[StickyFrame]] = None) -> SpinResult:
        """Play one spin in the mode `state` is in.

        Raises InvalidBetAmount or BonusStateMismatch before any draw is made.
        """
        state = state or inactive()
        if is_bonus_spin is None:
            is_bonus_spin = state.active
        bet = self.validate_bet(bet)
        check_resume_context(state, is_bonus_spin, bet, sticky_frames)
        grid = generate_grid(state.mode, state.sticky_frames, rng, self.config)
        return self.resolve(grid, bet, rng, state)

    def resolve(self, grid: Grid, bet: float, rng: RandomSource,
                state: BonusState) -> SpinResult:
        """Evaluate an already generated grid and apply the bonus transition.

        `rng` is only consumed for bonus entry frames, jackpot redraws and
        retrigger frames.
        """
        cfg = self.config
        mode = state.mode
        evaluation = evaluate(grid, bet, cfg)
        frames = apply_frames(evaluation, grid, mode, bet, rng, cfg, state.sticky_frames)

        common = dict(
            mode=mode,
            bet_amount=bet,
            grid=grid,
            winning_cells=tuple(sorted(evaluation.winning_cells)),
            winning_paylines=evaluation.line_wins,
            raw_payout=evaluation.raw_payout,
            payout=frames.final_payout,
            jackpots_hit=frames.jackpots_hit,
            scatter_count=evaluation.scatter_count,
            scatter_positions=evaluation.scatter_positions,
            capped=frames.capped,
        )

        if not mode.is_bonus:
            trigger = tier_for_scatter_count(evaluation.scatter_count)
            if trigger.is_bonus:
                next_state = enter_bonus(trigger, bet, rng, cfg, version=state.version + 1)
            else:
                next_state = state
            outcome = SpinOutcome(
                **common,
                bonus_trigger=trigger if trigger.is_bonus else None,
                free_spins_awarded=next_state.spins_remaining if trigger.is_bonus else 0,
                updated_sticky_frames=next_state.sticky_frames,
                spins_remaining=next_state.spins_remaining,
                cost=bet,
                payout_due=frames.final_payout,
                state_version=next_state.version,
            )
            logger.debug(f"Base spin: bet={bet} payout={frames.final_payout:.4f} "
                         f"scatters={evaluation.scatter_count}")
            return SpinResult(outcome=outcome, state=next_state)

        step = advance(state, frames.final_payout, evaluation.scatter_count,
                       frames.updated_sticky_frames, rng, cfg)
        outcome = SpinOutcome(
            **common,
            retrigger_spins=step.retrigger_spins,
            updated_sticky_frames=step.state.sticky_frames,
            spins_remaining=step.state.spins_remaining,
            bonus_complete=step.completed,
            bonus_total_win=step.total_win if step.completed else step.state.accumulated_win,
            cost=0.0,
            payout_due=step.total_win if step.completed else 0.0,
            state_version=step.state.version,
        )
        logger.debug(f"Bonus spin: {mode.display_name} payout={frames.final_payout:.4f} "
                     f"remaining={step.state.spins_remaining}")
        return SpinResult(outcome=outcome, state=step.state)

    def buy_bonus(self, bet: float, bonus_type: str, rng: RandomSource,
                  state: Optional[BonusState] = None) -> SpinResult:
        """Enter a bonus directly: "regular" draws tier 1 or 2, "super" is tier 3."""
        state = state or inactive()
        bet = self.validate_bet(bet)
        if bonus_type not in ("regular", "super"):
            raise InvalidBonusType(f"Unknown bonus type: {bonus_type}")
        check_resume_context(state, False, bet)

        cost = buy_cost(bet, bonus_type, self.config)
        mode = buy_mode(bonus_type, rng, self.config)
        next_state = enter_bonus(mode, bet, rng, self.config, version=state.version + 1)
        outcome = SpinOutcome(
            mode=BonusMode.NONE,
            bet_amount=bet,
            bonus_trigger=mode,
            free_spins_awarded=next_state.spins_remaining,
            updated_sticky_frames=next_state.sticky_frames,
            spins_remaining=next_state.spins_remaining,
            cost=cost,
            state_version=next_state.version,
        )
        return SpinResult(outcome=outcome, state=next_state)

    def bonus_buy_cost(self, bet: float, bonus_type: str) -> float:
        return buy_cost(self.validate_bet(bet), bonus_type, self.config)
