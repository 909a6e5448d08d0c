"""
LUXE — Monte Carlo RTP Validation

RTP and volatility are properties of the probability tables, checked
statistically rather than spin by spin. A "round" is one paid base spin
plus the whole bonus run it triggers, so bonus wins count toward the spin
that bought them.

Usage:
    python -m sim_engine.luxe.simulate --spins 200000 --seed 42
"""

import argparse
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.settings import SlotSettings
from config.slot_schema import GameConfig
from sim_engine.luxe.engine import LuxeEngine
from sim_engine.luxe.rng import SeededRandomSource
from sim_engine.luxe.symbols import BonusMode

console = Console()
logger = logging.getLogger("luxe.sim")


@dataclass
class SimResult:
    """Simulation results for The Luxe."""
    label: str
    rounds: int
    total_wagered: float
    total_returned: float
    rtp: float
    hit_rate: float           # rounds that returned > 0
    max_multiplier_hit: float
    std_dev: float            # per-round return, in bets
    confidence_95: tuple = (0.0, 0.0)
    bonus_frequency: dict = field(default_factory=dict)   # mode -> fraction of rounds
    avg_bonus_win: dict = field(default_factory=dict)     # mode -> mean run total, in bets
    distribution: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "rounds": self.rounds,
            "rtp": round(self.rtp, 4),
            "hit_rate": round(self.hit_rate, 4),
            "max_multiplier_hit": round(self.max_multiplier_hit, 2),
            "std_dev": round(self.std_dev, 4),
            "total_wagered": round(self.total_wagered, 2),
            "total_returned": round(self.total_returned, 2),
            "confidence_95": [round(x, 6) for x in self.confidence_95],
            "bonus_frequency": {k: round(v, 6) for k, v in self.bonus_frequency.items()},
            "avg_bonus_win": {k: round(v, 4) for k, v in self.avg_bonus_win.items()},
            "distribution": self.distribution,
        }


def categorize_win(mult: float) -> str:
    if mult == 0:
        return "0x"
    if mult < 1:
        return "0-1x"
    if mult < 2:
        return "1-2x"
    if mult < 5:
        return "2-5x"
    if mult < 20:
        return "5-20x"
    if mult < 100:
        return "20-100x"
    if mult < 1000:
        return "100-1000x"
    return "1000x+"


class _Accumulator:
    """Running totals with Welford variance."""

    def __init__(self):
        self.n = 0
        self.mean = 0.0
        self.m2 = 0.0
        self.wins = 0
        self.max_mult = 0.0
        self.buckets = {}

    def add(self, mult: float):
        self.n += 1
        delta = mult - self.mean
        self.mean += delta / self.n
        self.m2 += delta * (mult - self.mean)
        if mult > 0:
            self.wins += 1
        self.max_mult = max(self.max_mult, mult)
        bucket = categorize_win(mult)
        self.buckets[bucket] = self.buckets.get(bucket, 0) + 1

    @property
    def std_dev(self) -> float:
        return math.sqrt(self.m2 / self.n) if self.n > 1 else 0.0


def _play_out(engine: LuxeEngine, state, bet: float, rng) -> float:
    """Finish a bonus run; returns the run total."""
    total = 0.0
    while state.active:
        result = engine.spin(bet, rng, state)
        state = result.state
        total += result.outcome.payout_due
    return total


def _finish(label: str, acc: _Accumulator, cost: float,
            triggers: dict, bonus_totals: dict) -> SimResult:
    rounds = acc.n
    std_err = acc.std_dev / math.sqrt(rounds) if rounds else 0.0
    rtp = acc.mean / cost if cost else 0.0
    logger.info(f"{label}: {rounds:,} rounds, RTP={rtp * 100:.2f}%")
    return SimResult(
        label=label,
        rounds=rounds,
        total_wagered=rounds * cost,
        total_returned=acc.mean * rounds,
        rtp=rtp,
        hit_rate=acc.wins / rounds if rounds else 0.0,
        max_multiplier_hit=acc.max_mult,
        std_dev=acc.std_dev,
        confidence_95=(rtp - 1.96 * std_err / cost, rtp + 1.96 * std_err / cost),
        bonus_frequency={m: c / rounds for m, c in triggers.items()} if rounds else {},
        avg_bonus_win={m: bonus_totals[m] / triggers[m] for m in triggers if triggers[m]},
        distribution={k: round(v / rounds, 6) for k, v in sorted(acc.buckets.items())},
    )


def simulate(config: Optional[GameConfig] = None, spins: int = 100_000,
             seed: int = 42, bet: float = 1.0) -> SimResult:
    """Base-game RTP including triggered bonus runs."""
    engine = LuxeEngine(config)
    rng = SeededRandomSource(seed)
    acc = _Accumulator()
    triggers = {m.value: 0 for m in BonusMode if m.is_bonus}
    bonus_totals = dict.fromkeys(triggers, 0.0)

    for _ in range(spins):
        result = engine.spin(bet, rng)
        returned = result.outcome.payout_due
        if result.state.active:
            mode = result.state.mode.value
            run = _play_out(engine, result.state, bet, rng)
            triggers[mode] += 1
            bonus_totals[mode] += run / bet
            returned += run
        acc.add(returned / bet)

    return _finish("base_game", acc, 1.0, triggers, bonus_totals)


def simulate_bonus_buy(bonus_type: str, config: Optional[GameConfig] = None,
                       rounds: int = 10_000, seed: int = 42, bet: float = 1.0) -> SimResult:
    """RTP of buying a bonus, relative to its cost."""
    engine = LuxeEngine(config)
    rng = SeededRandomSource(seed)
    acc = _Accumulator()
    triggers = {m.value: 0 for m in BonusMode if m.is_bonus}
    bonus_totals = dict.fromkeys(triggers, 0.0)
    cost = engine.bonus_buy_cost(bet, bonus_type) / bet

    for _ in range(rounds):
        result = engine.buy_bonus(bet, bonus_type, rng)
        mode = result.state.mode.value
        run = _play_out(engine, result.state, bet, rng)
        triggers[mode] += 1
        bonus_totals[mode] += run / bet
        acc.add(run / bet)

    return _finish(f"bonus_buy_{bonus_type}", acc, cost, triggers, bonus_totals)


def print_report(result: SimResult) -> None:
    lo, hi = result.confidence_95
    console.print(Panel(
        f"[bold]Rounds:[/bold] {result.rounds:,}\n"
        f"[bold]RTP:[/bold] {result.rtp * 100:.2f}%  (95% CI {lo * 100:.2f}% – {hi * 100:.2f}%)\n"
        f"[bold]Hit Rate:[/bold] {result.hit_rate * 100:.2f}%\n"
        f"[bold]Std Dev:[/bold] {result.std_dev:.2f}x\n"
        f"[bold]Max Win:[/bold] {result.max_multiplier_hit:,.2f}x",
        title=f"The Luxe — {result.label}", border_style="yellow",
    ))

    bonus = Table(title="Bonus Runs")
    bonus.add_column("Mode")
    bonus.add_column("Frequency", justify="right")
    bonus.add_column("Avg Win (x bet)", justify="right")
    for mode, freq in result.bonus_frequency.items():
        avg = result.avg_bonus_win.get(mode, 0.0)
        bonus.add_row(BonusMode(mode).display_name, f"{freq * 100:.4f}%", f"{avg:.2f}")
    console.print(bonus)

    dist = Table(title="Win Distribution")
    dist.add_column("Bucket")
    dist.add_column("Share", justify="right")
    for bucket, share in result.distribution.items():
        dist.add_row(bucket, f"{share * 100:.3f}%")
    console.print(dist)


def main():
    parser = argparse.ArgumentParser(description="Monte Carlo RTP check for The Luxe")
    parser.add_argument("--spins", type=int, default=100_000)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--buy", choices=["regular", "super"], default=None,
                        help="simulate bonus buys instead of base spins")
    args = parser.parse_args()

    SlotSettings.configure_logging()
    config = SlotSettings.game_config()
    if args.buy:
        result = simulate_bonus_buy(args.buy, config, rounds=args.spins, seed=args.seed)
    else:
        result = simulate(config, spins=args.spins, seed=args.seed)
    print_report(result)


if __name__ == "__main__":
    main()
