"""
LUXE — Grid Generator

Draws a 4x5 symbol grid and an independent frame overlay for one spin.

Draw order is fixed so the same stream always yields the same grid:
row-major, and per cell: symbol, frame presence, frame type, frame value.
Every cell draws a frame whether or not a sticky frame covers it; sticky
frames are stamped afterwards, so the symbol layout does not depend on the
sticky set.
"""

from __future__ import annotations

import logging
from typing import Iterable

from config.slot_schema import GameConfig, SymbolDistribution
from sim_engine.luxe.rng import RandomSource
from sim_engine.luxe.symbols import (
    REGULAR_SYMBOLS, BonusMode, Cell, Frame, Grid, StickyFrame, Symbol,
)

logger = logging.getLogger("luxe.engine")


def symbol_distribution(config: GameConfig, mode: BonusMode) -> SymbolDistribution:
    if mode.is_bonus:
        return config.bonus_tier(mode.value).symbols
    return config.base_symbols


def frame_probability(config: GameConfig, mode: BonusMode) -> float:
    if mode.is_bonus:
        return config.bonus_tier(mode.value).frame_probability
    return config.frames.base_probability


def draw_symbol(rng: RandomSource, dist: SymbolDistribution) -> Symbol:
    roll = rng.random()
    if roll < dist.scatter_probability:
        return Symbol.SCATTER
    if roll < dist.scatter_probability + dist.wild_probability:
        return Symbol.WILD
    return rng.choice(REGULAR_SYMBOLS)


def draw_multiplier(rng: RandomSource, config: GameConfig, mode: BonusMode) -> int:
    pool = (config.frames.bonus_multiplier_weights if mode.is_bonus
            else config.frames.base_multiplier_weights)
    values = sorted(pool)
    return rng.weighted_choice(values, [pool[v] for v in values])


def draw_jackpot_tier(rng: RandomSource, config: GameConfig) -> str:
    tiers = config.jackpot_tiers
    return rng.weighted_choice([t.name for t in tiers], [t.weight for t in tiers])


def draw_frame(rng: RandomSource, config: GameConfig, mode: BonusMode) -> Frame:
    """Pick a frame type, then its value from the mode's pool."""
    if rng.chance(config.frames.jackpot_share):
        return Frame.jackpot(draw_jackpot_tier(rng, config))
    return Frame.multiplier(draw_multiplier(rng, config, mode))


def generate_grid(mode: BonusMode, sticky_frames: Iterable[StickyFrame],
                  rng: RandomSource, config: GameConfig) -> Grid:
    dist = symbol_distribution(config, mode)
    p_frame = frame_probability(config, mode)

    rows = []
    for _row in range(config.rows):
        cells = []
        for _col in range(config.cols):
            symbol = draw_symbol(rng, dist)
            frame = draw_frame(rng, config, mode) if rng.chance(p_frame) else None
            cells.append(Cell(symbol, frame))
        rows.append(tuple(cells))
    grid = Grid(tuple(rows))

    sticky = {f.coord: f.frame for f in sticky_frames}
    if sticky:
        grid = grid.with_frames(sticky)
    logger.debug(f"Grid generated: mode={mode.value} sticky={len(sticky)} draws={rng.draws}")
    return grid
