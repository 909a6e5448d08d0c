"""
LUXE — Payline Evaluator

Scans the 14 fixed paylines left to right. A win is the longest contiguous
run starting at column 0; wild stands in for any symbol except scatter, and
scatter breaks every run. A line led by wilds pays the better of the run on
the first non-wild symbol and the pure-wild run (ties go to the symbol).

Amounts here are paytable multiple x bet, before any frame is applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from config.slot_schema import GameConfig
from sim_engine.luxe.symbols import Grid, Symbol

MIN_MATCH = 3

Coord = tuple[int, int]


@dataclass(frozen=True)
class LineWin:
    payline_index: int
    symbol: Symbol
    match_count: int
    payout: float
    cells: tuple[Coord, ...]

    def to_dict(self) -> dict:
        return {
            "payline_index": self.payline_index,
            "symbol_id": int(self.symbol),
            "symbol": self.symbol.key,
            "match_count": self.match_count,
            "payout": self.payout,
        }


@dataclass(frozen=True)
class LineEvaluation:
    line_wins: tuple[LineWin, ...]
    winning_cells: frozenset
    raw_payout: float
    scatter_count: int
    scatter_positions: tuple[Coord, ...]

    @property
    def is_win(self) -> bool:
        return bool(self.line_wins)


def payline_coords(config: GameConfig) -> list[tuple[Coord, ...]]:
    return [tuple((row, col) for col, row in enumerate(line)) for line in config.paylines]


def run_length(symbols: Sequence[Symbol], target: Symbol) -> int:
    """Contiguous cells from column 0 that count as `target`."""
    n = 0
    for s in symbols:
        if s is target or (s.is_wild and not target.is_scatter):
            n += 1
        else:
            break
    return n


def _line_multiple(config: GameConfig, symbol: Symbol, match_count: int) -> float:
    if match_count < MIN_MATCH:
        return 0.0
    entry = config.pay_entry(symbol.key)
    return entry.multiple(match_count) if entry else 0.0


def best_line_match(symbols: Sequence[Symbol], config: GameConfig) -> Optional[tuple[Symbol, int, float]]:
    """(symbol, match_count, bet multiple) of the best run, or None."""
    if not symbols or symbols[0].is_scatter:
        return None

    candidates = []
    lead = next((s for s in symbols if not s.is_wild), None)
    if lead is not None and not lead.is_scatter:
        n = run_length(symbols, lead)
        candidates.append((lead, n, _line_multiple(config, lead, n)))
    wilds = run_length(symbols, Symbol.WILD)
    if wilds:
        candidates.append((Symbol.WILD, wilds, _line_multiple(config, Symbol.WILD, wilds)))

    best = None
    for cand in candidates:
        if cand[2] > 0 and (best is None or cand[2] > best[2]):
            best = cand
    return best


def evaluate(grid: Grid, bet: float, config: GameConfig) -> LineEvaluation:
    wins = []
    cells: set[Coord] = set()
    for index, coords in enumerate(payline_coords(config)):
        symbols = [grid.symbol_at(r, c) for r, c in coords]
        match = best_line_match(symbols, config)
        if match is None:
            continue
        symbol, count, multiple = match
        run = coords[:count]
        wins.append(LineWin(
            payline_index=index,
            symbol=symbol,
            match_count=count,
            payout=multiple * bet,
            cells=run,
        ))
        cells.update(run)

    scatters = grid.scatter_positions()
    return LineEvaluation(
        line_wins=tuple(wins),
        winning_cells=frozenset(cells),
        raw_payout=sum((w.payout for w in wins), 0.0),
        scatter_count=len(scatters),
        scatter_positions=scatters,
    )
