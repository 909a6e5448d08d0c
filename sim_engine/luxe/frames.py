"""
LUXE — Frame / Multiplier Resolver

Scales line payouts by the multiplier frames on their winning cells and
awards jackpot frames touched by a win.

  - A line's payout is multiplied by every multiplier frame on its winning
    run, one after another.
  - Each distinct winning cell with a jackpot frame pays tier multiple x bet
    once, on top of line payouts.
  - In a bonus run, sticky multipliers involved in a win double (once per
    spin, capped at max_frame_value and never lowered); consumed sticky
    jackpots are redrawn with a new tier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from config.slot_schema import GameConfig
from sim_engine.luxe.grid import draw_jackpot_tier
from sim_engine.luxe.paylines import LineEvaluation
from sim_engine.luxe.rng import RandomSource
from sim_engine.luxe.symbols import BonusMode, Frame, Grid, StickyFrame, normalize_sticky

logger = logging.getLogger("luxe.engine")


@dataclass(frozen=True)
class JackpotHit:
    row: int
    col: int
    tier: str
    amount: float

    def to_dict(self) -> dict:
        return {"row": self.row, "col": self.col, "tier": self.tier, "amount": self.amount}


@dataclass(frozen=True)
class FrameResolution:
    final_payout: float
    line_payouts: tuple[float, ...]       # per LineWin, after multipliers
    jackpots_hit: tuple[JackpotHit, ...]
    updated_sticky_frames: tuple[StickyFrame, ...]
    escalated: tuple[tuple[int, int], ...]  # sticky multipliers that doubled
    capped: bool = False


def escalate(value: int, cap: int) -> int:
    """Double a multiplier without exceeding the cap or ever decreasing it."""
    if value >= cap:
        return value
    return min(value * 2, cap)


def apply_frames(evaluation: LineEvaluation, grid: Grid, mode: BonusMode,
                 bet: float, rng: RandomSource, config: GameConfig,
                 sticky_frames: Iterable[StickyFrame] = ()) -> FrameResolution:
    line_payouts = []
    for win in evaluation.line_wins:
        pay = win.payout
        for r, c in win.cells:
            frame = grid.frame_at(r, c)
            if frame is not None and frame.is_multiplier:
                pay *= frame.value
        line_payouts.append(pay)

    jackpots = []
    for r, c in sorted(evaluation.winning_cells):
        frame = grid.frame_at(r, c)
        if frame is not None and frame.is_jackpot:
            amount = config.jackpot_multiple(frame.value) * bet
            jackpots.append(JackpotHit(r, c, frame.value, amount))

    final = sum(line_payouts, 0.0) + sum((j.amount for j in jackpots), 0.0)

    capped = False
    if config.max_win_multiplier is not None:
        ceiling = max(config.max_win_multiplier * bet, evaluation.raw_payout)
        if final > ceiling:
            final = ceiling
            capped = True

    sticky = normalize_sticky(sticky_frames)
    escalated = []
    if mode.is_bonus and evaluation.winning_cells:
        updated = []
        for sf in sticky:
            if sf.coord not in evaluation.winning_cells:
                updated.append(sf)
            elif sf.frame.is_multiplier:
                value = escalate(int(sf.value), config.max_frame_value)
                updated.append(StickyFrame.at(sf.row, sf.col, Frame.multiplier(value)))
                escalated.append(sf.coord)
            else:
                tier = draw_jackpot_tier(rng, config)
                updated.append(StickyFrame.at(sf.row, sf.col, Frame.jackpot(tier)))
        sticky = tuple(updated)

    if jackpots or escalated:
        logger.debug(f"Frames resolved: jackpots={[j.tier for j in jackpots]} "
                     f"escalated={escalated} final={final:.4f}")

    return FrameResolution(
        final_payout=final,
        line_payouts=tuple(line_payouts),
        jackpots_hit=tuple(jackpots),
        updated_sticky_frames=sticky,
        escalated=tuple(escalated),
        capped=capped,
    )
