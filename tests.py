#!/usr/bin/env python3
"""
LUXE — Engine Test Suite

Run: python tests.py
     python tests.py -v              # verbose
     python tests.py TestPaylines    # run specific class

Test categories:
  TestPaylines        — Paytable boundaries, wild substitution, scatter handling
  TestFrames          — Multiplier products, jackpots, escalation, win cap
  TestBaseGame        — Bonus entry from scatters, ledger amounts, bet checks
  TestBonusRun        — Decrement, retrigger, completion, sticky frames
  TestBonusBuy        — Regular / super buys
  TestGridGenerator   — Determinism, Velvet Nights rules
  TestProvablyFair    — HMAC stream, hashes, verification
  TestConfig          — Schema validation, operator settings
  TestSimulation      — Monte Carlo smoke runs
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import patch

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from pydantic import ValidationError

from config.settings import SlotSettings
from config.slot_schema import GameConfig, default_game_config
from sim_engine.luxe import (
    BonusMode, BonusState, BonusStateMismatch, ConcurrentSpinConflict, Frame,
    FrameType, Grid, HmacRandomStream, InvalidBetAmount, InvalidBonusType,
    LuxeEngine, ProvablyFairRNG, SeededRandomSource, StickyFrame, Symbol, get_engine,
)
from sim_engine.luxe.bonus import (
    advance, enter_bonus, inactive, retrigger_spins, tier_for_scatter_count,
)
from sim_engine.luxe.engine import check_resume_context
from sim_engine.luxe.errors import InvalidConfiguration
from sim_engine.luxe.frames import apply_frames, escalate
from sim_engine.luxe.grid import generate_grid
from sim_engine.luxe.paylines import best_line_match, evaluate
from sim_engine.luxe.simulate import categorize_win, simulate, simulate_bonus_buy

D, C, S, H = Symbol.DIAMOND_SUIT, Symbol.CLUB_SUIT, Symbol.SPADE_SUIT, Symbol.HEART_SUIT
DI, CH, CA, CR, G = Symbol.DICE, Symbol.CHIPS, Symbol.CARDS, Symbol.CROWN, Symbol.GEM
W, X = Symbol.WILD, Symbol.SCATTER

# Alternating columns: no payline can match past column 1.
DEAD_ROW = [D, C, D, C, D]


def _dead_rows():
    return [list(DEAD_ROW) for _ in range(4)]


def _grid(rows, frames=None) -> Grid:
    return Grid.from_symbols(rows, frames)


def _with_scatters(coords):
    rows = _dead_rows()
    for r, c in coords:
        rows[r][c] = X
    return rows


def _gem_row_grid(frames=None) -> Grid:
    """Row 0 opens with three gems; only payline 0 wins (2.0 x bet)."""
    rows = _dead_rows()
    rows[0] = [G, G, G, C, D]
    return _grid(rows, frames)


def _bonus_state(mode=BonusMode.TIER1, remaining=5, sticky=(), bet=1.0,
                 accumulated=0.0, version=1) -> BonusState:
    return BonusState(mode=mode, spins_remaining=remaining, accumulated_win=accumulated,
                      sticky_frames=tuple(sticky), bet_amount=bet, version=version)


# ============================================================
# Payline Tests
# ============================================================

class TestPaylines(unittest.TestCase):

    def setUp(self):
        self.config = default_game_config()

    def test_two_match_pays_nothing(self):
        self.assertIsNone(best_line_match([G, G, C, D, D], self.config))

    def test_three_match_pays_three_value(self):
        symbol, count, multiple = best_line_match([G, G, G, C, D], self.config)
        self.assertEqual((symbol, count), (G, 3))
        self.assertAlmostEqual(multiple, 2.0)

    def test_five_match_pays_five_value(self):
        symbol, count, multiple = best_line_match([CR] * 5, self.config)
        self.assertEqual(count, 5)
        self.assertAlmostEqual(multiple, 10.0)

    def test_wilds_extend_a_symbol_run(self):
        """A W W B counts as three A."""
        symbol, count, multiple = best_line_match([CR, W, W, CA, D], self.config)
        self.assertEqual((symbol, count), (CR, 3))
        self.assertAlmostEqual(multiple, 1.0)

    def test_scatter_breaks_the_run(self):
        self.assertIsNone(best_line_match([G, G, X, G, G], self.config))

    def test_scatter_in_first_column_never_pays(self):
        self.assertIsNone(best_line_match([X, G, G, G, G], self.config))
        self.assertIsNone(best_line_match([W, X, G, G, G], self.config))

    def test_wild_led_line_prefers_better_run(self):
        # Three wilds (2.0) beat four diamonds (0.05)
        symbol, count, _ = best_line_match([W, W, W, D, C], self.config)
        self.assertEqual((symbol, count), (W, 3))
        # Five gems (20.0) beat a single wild
        symbol, count, _ = best_line_match([W, G, G, G, G], self.config)
        self.assertEqual((symbol, count), (G, 5))

    def test_wild_led_tie_goes_to_symbol(self):
        # Four gems pay 5.0, three wilds pay 2.0
        symbol, count, _ = best_line_match([W, W, W, G, D], self.config)
        self.assertEqual((symbol, count), (G, 4))

    def test_dead_grid_has_no_wins(self):
        ev = evaluate(_grid(_dead_rows()), 1.0, self.config)
        self.assertFalse(ev.is_win)
        self.assertEqual(ev.raw_payout, 0.0)
        self.assertEqual(ev.winning_cells, frozenset())

    def test_single_line_win(self):
        ev = evaluate(_gem_row_grid(), 1.0, self.config)
        self.assertEqual(len(ev.line_wins), 1)
        win = ev.line_wins[0]
        self.assertEqual(win.payline_index, 0)
        self.assertEqual(win.cells, ((0, 0), (0, 1), (0, 2)))
        self.assertAlmostEqual(win.payout, 2.0)

    def test_raw_payout_is_sum_of_lines(self):
        rows = _dead_rows()
        rows[0] = [G, G, G, C, D]
        rows[3] = [CH, CH, CH, CH, D]
        ev = evaluate(_grid(rows), 2.0, self.config)
        self.assertEqual(len(ev.line_wins), 2)
        self.assertAlmostEqual(ev.raw_payout, sum(w.payout for w in ev.line_wins))
        self.assertAlmostEqual(ev.raw_payout, 2.0 * 2.0 + 0.5 * 2.0)

    def test_scatters_counted_anywhere(self):
        ev = evaluate(_grid(_with_scatters([(0, 2), (3, 4)])), 1.0, self.config)
        self.assertEqual(ev.scatter_count, 2)
        self.assertEqual(ev.scatter_positions, ((0, 2), (3, 4)))


# ============================================================
# Frame Tests
# ============================================================

class TestFrames(unittest.TestCase):

    def setUp(self):
        self.config = default_game_config()
        self.rng = SeededRandomSource(3)

    def _resolve(self, grid, mode=BonusMode.NONE, sticky=(), config=None):
        config = config or self.config
        ev = evaluate(grid, 1.0, config)
        return ev, apply_frames(ev, grid, mode, 1.0, self.rng, config, sticky)

    def test_multipliers_on_a_line_multiply(self):
        grid = _gem_row_grid({(0, 0): Frame.multiplier(2), (0, 2): Frame.multiplier(3)})
        _, res = self._resolve(grid)
        self.assertAlmostEqual(res.final_payout, 2.0 * 2 * 3)

    def test_frame_off_the_winning_run_is_ignored(self):
        grid = _gem_row_grid({(0, 3): Frame.multiplier(10), (2, 2): Frame.multiplier(10)})
        _, res = self._resolve(grid)
        self.assertAlmostEqual(res.final_payout, 2.0)

    def test_jackpot_on_winning_cell_pays_tier(self):
        grid = _gem_row_grid({(0, 1): Frame.jackpot("major")})
        _, res = self._resolve(grid)
        self.assertEqual(len(res.jackpots_hit), 1)
        self.assertEqual(res.jackpots_hit[0].tier, "major")
        self.assertAlmostEqual(res.final_payout, 2.0 + 100.0)

    def test_final_never_below_raw(self):
        for seed in range(30):
            engine = LuxeEngine()
            outcome = engine.spin(1.0, SeededRandomSource(seed)).outcome
            self.assertGreaterEqual(outcome.payout, outcome.raw_payout)

    def test_win_cap(self):
        config = GameConfig(max_win_multiplier=50)
        grid = _gem_row_grid({(0, 0): Frame.multiplier(10), (0, 1): Frame.multiplier(10)})
        ev, res = self._resolve(grid, config=config)
        self.assertTrue(res.capped)
        self.assertAlmostEqual(res.final_payout, 50.0)
        self.assertGreaterEqual(res.final_payout, ev.raw_payout)

    def test_escalate_doubles_and_caps(self):
        self.assertEqual(escalate(5, 1000), 10)
        self.assertEqual(escalate(600, 1000), 1000)
        self.assertEqual(escalate(1000, 1000), 1000)
        self.assertEqual(escalate(1500, 1000), 1500)

    def test_sticky_multiplier_escalates_on_win(self):
        sticky = (StickyFrame(0, 2, FrameType.MULTIPLIER, 5),)
        grid = _gem_row_grid({(0, 2): Frame.multiplier(5)})
        _, res = self._resolve(grid, BonusMode.TIER1, sticky)
        self.assertAlmostEqual(res.final_payout, 10.0)
        self.assertEqual(res.updated_sticky_frames[0].value, 10)
        self.assertEqual(res.escalated, ((0, 2),))

    def test_sticky_untouched_without_win(self):
        sticky = (StickyFrame(1, 1, FrameType.MULTIPLIER, 5),)
        grid = _grid(_dead_rows(), {(1, 1): Frame.multiplier(5)})
        _, res = self._resolve(grid, BonusMode.TIER1, sticky)
        self.assertEqual(res.updated_sticky_frames, sticky)
        self.assertEqual(res.escalated, ())

    def test_sticky_jackpot_redrawn_after_hit(self):
        sticky = (StickyFrame(0, 1, FrameType.JACKPOT, "mini"),)
        grid = _gem_row_grid({(0, 1): Frame.jackpot("mini")})
        _, res = self._resolve(grid, BonusMode.TIER2, sticky)
        self.assertAlmostEqual(res.final_payout, 2.0 + 25.0)
        frame = res.updated_sticky_frames[0]
        self.assertEqual(frame.coord, (0, 1))
        self.assertEqual(frame.frame_type, FrameType.JACKPOT)
        self.assertIn(frame.value, [t.name for t in self.config.jackpot_tiers])

    def test_escalation_is_monotonic_over_a_run(self):
        engine = LuxeEngine()
        state = enter_bonus(BonusMode.TIER3, 1.0, SeededRandomSource(11), engine.config)
        rng = SeededRandomSource(12)
        while state.active:
            before = {f.coord: f.value for f in state.sticky_frames if f.frame_type is FrameType.MULTIPLIER}
            state = engine.spin(1.0, rng, state).state
            for f in state.sticky_frames:
                if f.coord in before and f.frame_type is FrameType.MULTIPLIER:
                    self.assertGreaterEqual(f.value, before[f.coord])
                    self.assertLessEqual(f.value, max(before[f.coord], engine.config.max_frame_value))


# ============================================================
# Base Game Tests
# ============================================================

class TestBaseGame(unittest.TestCase):

    def setUp(self):
        self.engine = LuxeEngine()

    def test_three_scatters_enter_black_and_gold(self):
        grid = _grid(_with_scatters([(0, 2), (1, 2), (2, 4)]))
        result = self.engine.resolve(grid, 1.0, SeededRandomSource(1), inactive())
        out = result.outcome
        self.assertEqual(out.payout, 0.0)
        self.assertEqual(out.bonus_trigger, BonusMode.TIER1)
        self.assertEqual(out.free_spins_awarded, 10)
        self.assertEqual(result.state.mode, BonusMode.TIER1)
        self.assertEqual(result.state.spins_remaining, 10)
        self.assertEqual(len(result.state.sticky_frames), 1)
        self.assertEqual(out.cost, 1.0)
        self.assertEqual(out.payout_due, 0.0)

    def test_scatter_counts_pick_tier(self):
        self.assertEqual(tier_for_scatter_count(2), BonusMode.NONE)
        self.assertEqual(tier_for_scatter_count(3), BonusMode.TIER1)
        self.assertEqual(tier_for_scatter_count(4), BonusMode.TIER2)
        self.assertEqual(tier_for_scatter_count(5), BonusMode.TIER3)
        self.assertEqual(tier_for_scatter_count(9), BonusMode.TIER3)

    def test_golden_hits_entry_frames(self):
        grid = _grid(_with_scatters([(0, 2), (1, 2), (2, 4), (3, 0)]))
        state = self.engine.resolve(grid, 1.0, SeededRandomSource(2), inactive()).state
        self.assertEqual(state.mode, BonusMode.TIER2)
        self.assertEqual(state.spins_remaining, 12)
        self.assertEqual(len({f.coord for f in state.sticky_frames}), 3)

    def test_base_win_is_paid_immediately(self):
        result = self.engine.resolve(_gem_row_grid(), 1.0, SeededRandomSource(1), inactive())
        self.assertAlmostEqual(result.outcome.payout_due, 2.0)
        self.assertFalse(result.state.active)
        self.assertEqual(result.state.version, 0)

    def test_bet_validation(self):
        rng = SeededRandomSource(1)
        for bad in (0, -1, 0.05, 1000, "abc", None, float("nan")):
            with self.assertRaises(InvalidBetAmount):
                self.engine.spin(bad, rng)
        self.assertEqual(rng.draws, 0)

    def test_bet_must_be_whole_cents(self):
        with self.assertRaises(InvalidBetAmount):
            self.engine.validate_bet(0.125)
        with self.assertRaises(InvalidBetAmount):
            self.engine.validate_bet(1.001)
        self.assertEqual(self.engine.validate_bet(0.1), 0.1)
        self.assertEqual(self.engine.validate_bet(0.3), 0.3)
        self.assertEqual(self.engine.validate_bet(2), 2.0)

    def test_base_spin_rejected_during_bonus(self):
        rng = SeededRandomSource(1)
        state = _bonus_state()
        with self.assertRaises(BonusStateMismatch) as ctx:
            self.engine.spin(1.0, rng, state, is_bonus_spin=False)
        self.assertEqual(ctx.exception.authoritative["mode"], "black_and_gold")
        self.assertEqual(rng.draws, 0)

    def test_bonus_spin_rejected_without_bonus(self):
        with self.assertRaises(BonusStateMismatch):
            self.engine.spin(1.0, SeededRandomSource(1), inactive(), is_bonus_spin=True)

    def test_bonus_context_must_match(self):
        sticky = (StickyFrame(0, 2, FrameType.MULTIPLIER, 5),)
        state = _bonus_state(sticky=sticky, bet=2.0)
        with self.assertRaises(BonusStateMismatch):
            self.engine.spin(1.0, SeededRandomSource(1), state)
        with self.assertRaises(BonusStateMismatch):
            self.engine.spin(2.0, SeededRandomSource(1), state, sticky_frames=())
        # Same frames in another order are accepted
        self.engine.spin(2.0, SeededRandomSource(1), state, sticky_frames=list(sticky))

    def test_run_position_must_match(self):
        state = _bonus_state(remaining=4, accumulated=6.5, version=3)
        check_resume_context(state, True, 1.0, (), spins_remaining=4,
                             accumulated_win=6.5, version=3)
        for position in ({"version": 2}, {"spins_remaining": 5},
                         {"accumulated_win": 0.0}):
            with self.assertRaises(BonusStateMismatch) as ctx:
                check_resume_context(state, True, 1.0, (), **position)
            self.assertEqual(ctx.exception.authoritative["version"], 3)

    def test_outcome_carries_state_version(self):
        base = self.engine.resolve(_grid(_dead_rows()), 1.0, SeededRandomSource(1), inactive())
        self.assertEqual(base.outcome.state_version, base.state.version)
        state = _bonus_state(remaining=3, version=4)
        step = self.engine.resolve(_grid(_dead_rows()), 1.0, SeededRandomSource(1), state)
        self.assertEqual(step.outcome.state_version, 5)
        self.assertEqual(step.outcome.to_dict()["state_version"], 5)

    def test_outcome_serializes(self):
        out = self.engine.spin(1.0, SeededRandomSource(5)).outcome
        data = out.to_dict()
        self.assertEqual(len(data["grid"]), 4)
        self.assertEqual(len(data["grid"][0]), 5)
        self.assertIn("symbol_id", data["grid"][0][0])
        self.assertEqual(data["mode"], "none")


# ============================================================
# Bonus Run Tests
# ============================================================

class TestBonusRun(unittest.TestCase):

    def setUp(self):
        self.engine = LuxeEngine()

    def test_sticky_multiplier_scenario(self):
        """A sticky 5x on a 2.00 line pays 10.00 and becomes 10x."""
        sticky = (StickyFrame(0, 2, FrameType.MULTIPLIER, 5),)
        state = _bonus_state(sticky=sticky, remaining=5)
        grid = _gem_row_grid({(0, 2): Frame.multiplier(5)})
        result = self.engine.resolve(grid, 1.0, SeededRandomSource(1), state)
        self.assertAlmostEqual(result.outcome.payout, 10.0)
        self.assertEqual(result.state.sticky_frames[0].value, 10)
        self.assertEqual(result.state.spins_remaining, 4)
        self.assertAlmostEqual(result.state.accumulated_win, 10.0)
        self.assertEqual(result.outcome.payout_due, 0.0)
        self.assertEqual(result.outcome.cost, 0.0)

    def test_last_spin_retrigger_keeps_run_alive(self):
        """1 spin left, 2 scatters: 1 - 1 + 2 = 2 and no exit."""
        state = _bonus_state(remaining=1)
        grid = _grid(_with_scatters([(0, 2), (3, 4)]))
        result = self.engine.resolve(grid, 1.0, SeededRandomSource(1), state)
        self.assertEqual(result.outcome.retrigger_spins, 2)
        self.assertEqual(result.state.spins_remaining, 2)
        self.assertTrue(result.state.active)
        self.assertFalse(result.outcome.bonus_complete)

    def test_retrigger_amounts(self):
        config = self.engine.config
        self.assertEqual(retrigger_spins(0, config), 0)
        self.assertEqual(retrigger_spins(1, config), 0)
        self.assertEqual(retrigger_spins(2, config), 2)
        self.assertEqual(retrigger_spins(3, config), 4)
        self.assertEqual(retrigger_spins(6, config), 4)

    def test_retrigger_adds_sticky_frame(self):
        sticky = (StickyFrame(3, 4, FrameType.MULTIPLIER, 3),)
        state = _bonus_state(remaining=5, sticky=sticky)
        grid = _grid(_with_scatters([(0, 2), (1, 2), (2, 4)]), {(3, 4): Frame.multiplier(3)})
        result = self.engine.resolve(grid, 1.0, SeededRandomSource(4), state)
        self.assertEqual(result.state.spins_remaining, 8)
        self.assertEqual(len(result.state.sticky_frames), 2)
        self.assertIn(sticky[0], result.state.sticky_frames)

    def test_free_spin_cap(self):
        engine = LuxeEngine(GameConfig(max_free_spins=3))
        state = _bonus_state(remaining=3)
        grid = _grid(_with_scatters([(0, 2), (1, 2), (2, 4)]))
        result = engine.resolve(grid, 1.0, SeededRandomSource(4), state)
        self.assertEqual(result.state.spins_remaining, 3)

    def test_free_spin_cap_never_shrinks_the_run(self):
        engine = LuxeEngine(GameConfig(max_free_spins=5))
        state = _bonus_state(remaining=10)
        grid = _grid(_with_scatters([(0, 2), (1, 2), (2, 4)]))
        result = engine.resolve(grid, 1.0, SeededRandomSource(4), state)
        self.assertEqual(result.state.spins_remaining, 9)
        self.assertEqual(result.outcome.retrigger_spins, 0)

    def test_free_spin_cap_leaves_entry_award(self):
        engine = LuxeEngine(GameConfig(max_free_spins=5))
        grid = _grid(_with_scatters([(0, 2), (1, 2), (2, 4)]))
        result = engine.resolve(grid, 1.0, SeededRandomSource(1), inactive())
        self.assertEqual(result.state.spins_remaining, 10)
        self.assertEqual(result.outcome.free_spins_awarded, 10)

    def test_free_spin_cap_limits_growth(self):
        engine = LuxeEngine(GameConfig(max_free_spins=6))
        state = _bonus_state(remaining=4)
        grid = _grid(_with_scatters([(0, 2), (1, 2), (2, 4)]))
        result = engine.resolve(grid, 1.0, SeededRandomSource(4), state)
        self.assertEqual(result.state.spins_remaining, 6)
        self.assertEqual(result.outcome.retrigger_spins, 3)

    def test_run_pays_total_once_on_last_spin(self):
        state = _bonus_state(remaining=2, accumulated=3.5, version=7)
        dead = _grid(_dead_rows())

        first = self.engine.resolve(dead, 1.0, SeededRandomSource(1), state)
        self.assertEqual(first.state.spins_remaining, 1)
        self.assertEqual(first.outcome.payout_due, 0.0)
        self.assertEqual(first.state.version, 8)

        last = self.engine.resolve(dead, 1.0, SeededRandomSource(1), first.state)
        self.assertTrue(last.outcome.bonus_complete)
        self.assertAlmostEqual(last.outcome.payout_due, 3.5)
        self.assertAlmostEqual(last.outcome.bonus_total_win, 3.5)
        self.assertEqual(last.state.mode, BonusMode.NONE)
        self.assertEqual(last.state.sticky_frames, ())
        self.assertEqual(last.state.version, 9)

    def test_full_run_counts_down_to_zero_once(self):
        config = self.engine.config
        state = enter_bonus(BonusMode.TIER1, 1.0, SeededRandomSource(21), config)
        rng = SeededRandomSource(22)
        completions = 0
        total = 0.0
        for _ in range(1000):
            if not state.active:
                break
            result = self.engine.spin(1.0, rng, state)
            self.assertGreaterEqual(result.state.spins_remaining, 0)
            total += result.outcome.payout
            completions += int(result.outcome.bonus_complete)
            if not result.outcome.bonus_complete:
                self.assertEqual(result.outcome.payout_due, 0.0)
            else:
                self.assertAlmostEqual(result.outcome.payout_due, total)
            state = result.state
        self.assertFalse(state.active)
        self.assertEqual(completions, 1)

    def test_advance_requires_active_run(self):
        with self.assertRaises(ValueError):
            advance(inactive(), 0.0, 0, (), SeededRandomSource(1), self.engine.config)

    def test_bonus_state_round_trips_through_dict(self):
        state = enter_bonus(BonusMode.TIER2, 2.5, SeededRandomSource(8), self.engine.config, version=4)
        self.assertEqual(BonusState.from_dict(state.to_dict()), state)


# ============================================================
# Bonus Buy Tests
# ============================================================

class TestBonusBuy(unittest.TestCase):

    def setUp(self):
        self.engine = LuxeEngine()

    def test_regular_buy(self):
        seen = set()
        for seed in range(20):
            result = self.engine.buy_bonus(1.0, "regular", SeededRandomSource(seed))
            self.assertEqual(result.outcome.cost, 100.0)
            self.assertIn(result.state.mode, (BonusMode.TIER1, BonusMode.TIER2))
            seen.add(result.state.mode)
        self.assertEqual(seen, {BonusMode.TIER1, BonusMode.TIER2})

    def test_super_buy(self):
        result = self.engine.buy_bonus(2.0, "super", SeededRandomSource(1))
        self.assertEqual(result.outcome.cost, 600.0)
        self.assertEqual(result.state.mode, BonusMode.TIER3)
        self.assertEqual(result.state.spins_remaining, 14)
        self.assertEqual(len(result.state.sticky_frames), 20)
        self.assertIsNone(result.outcome.grid)

    def test_unknown_buy_type(self):
        with self.assertRaises(InvalidBonusType):
            self.engine.buy_bonus(1.0, "mega", SeededRandomSource(1))

    def test_buy_rejected_during_bonus(self):
        with self.assertRaises(BonusStateMismatch):
            self.engine.buy_bonus(1.0, "regular", SeededRandomSource(1), _bonus_state())


# ============================================================
# Grid Generator Tests
# ============================================================

class TestGridGenerator(unittest.TestCase):

    def setUp(self):
        self.config = default_game_config()

    def test_same_seed_same_spin(self):
        engine = LuxeEngine()
        a = engine.spin(1.0, SeededRandomSource(99)).outcome.to_dict()
        b = engine.spin(1.0, SeededRandomSource(99)).outcome.to_dict()
        self.assertEqual(a, b)

    def test_same_hmac_stream_same_grid(self):
        a = generate_grid(BonusMode.NONE, (), HmacRandomStream("srv", "cli", 3), self.config)
        b = generate_grid(BonusMode.NONE, (), HmacRandomStream("srv", "cli", 3), self.config)
        c = generate_grid(BonusMode.NONE, (), HmacRandomStream("srv", "cli", 4), self.config)
        self.assertEqual(a, b)
        self.assertNotEqual(a.to_list(), c.to_list())

    def test_shape(self):
        grid = generate_grid(BonusMode.NONE, (), SeededRandomSource(1), self.config)
        self.assertEqual((grid.rows, grid.cols), (4, 5))

    def test_sticky_frames_stamped_without_moving_symbols(self):
        sticky = (StickyFrame(1, 1, FrameType.MULTIPLIER, 7),)
        plain = generate_grid(BonusMode.TIER1, (), SeededRandomSource(5), self.config)
        framed = generate_grid(BonusMode.TIER1, sticky, SeededRandomSource(5), self.config)
        self.assertEqual(framed.frame_at(1, 1), Frame.multiplier(7))
        for r in range(4):
            for c in range(5):
                self.assertEqual(plain.symbol_at(r, c), framed.symbol_at(r, c))

    def test_velvet_nights_has_no_scatter_and_frames_everywhere(self):
        for seed in range(50):
            grid = generate_grid(BonusMode.TIER3, (), SeededRandomSource(seed), self.config)
            self.assertEqual(grid.scatter_positions(), ())
            for r in range(4):
                for c in range(5):
                    self.assertIsNotNone(grid.frame_at(r, c))

    def test_velvet_nights_entry_frames_every_cell(self):
        state = enter_bonus(BonusMode.TIER3, 1.0, SeededRandomSource(3), self.config)
        coords = {f.coord for f in state.sticky_frames}
        self.assertEqual(len(coords), 20)

    def test_base_frames_use_base_pool(self):
        base_values = set(self.config.frames.base_multiplier_weights)
        for seed in range(40):
            grid = generate_grid(BonusMode.NONE, (), SeededRandomSource(seed), self.config)
            for row in grid.cells:
                for cell in row:
                    if cell.frame is not None and cell.frame.is_multiplier:
                        self.assertIn(cell.frame.value, base_values)


# ============================================================
# Provably Fair RNG Tests
# ============================================================

class TestProvablyFair(unittest.TestCase):

    def test_combined_hash_matches_round_hash(self):
        stream = HmacRandomStream("server", "client", 12)
        self.assertEqual(stream.combined_hash, ProvablyFairRNG.round_hash("server", "client", 12))
        self.assertTrue(ProvablyFairRNG.verify_round("server", "client", 12, stream.combined_hash))
        self.assertFalse(ProvablyFairRNG.verify_round("server", "client", 13, stream.combined_hash))

    def test_stream_floats_in_range_across_blocks(self):
        stream = HmacRandomStream("server", "client", 0)
        values = [stream.random() for _ in range(100)]
        self.assertTrue(all(0.0 <= v < 1.0 for v in values))
        self.assertEqual(stream.draws, 100)
        self.assertGreater(len(set(values)), 90)

    def test_new_seeds_commit_to_hash(self):
        seeds = ProvablyFairRNG().new_seeds("my-seed")
        self.assertEqual(seeds.client_seed, "my-seed")
        self.assertTrue(ProvablyFairRNG.verify_server_seed(seeds.server_seed, seeds.server_seed_hash))
        self.assertFalse(ProvablyFairRNG.verify_server_seed("other", seeds.server_seed_hash))

    def test_generated_client_seed(self):
        seeds = ProvablyFairRNG().new_seeds()
        self.assertEqual(len(seeds.client_seed), 32)

    def test_randbelow_bounds(self):
        rng = SeededRandomSource(1)
        self.assertTrue(all(0 <= rng.randbelow(7) < 7 for _ in range(200)))
        with self.assertRaises(ValueError):
            rng.randbelow(0)


# ============================================================
# Config Tests
# ============================================================

class TestConfig(unittest.TestCase):

    def test_default_config_valid(self):
        config = default_game_config()
        self.assertEqual(len(config.paylines), 14)
        self.assertEqual(config.bonus_tier("golden_hits").free_spins, 12)
        self.assertEqual(config.jackpot_multiple("mega"), 500)

    def test_payline_count_enforced(self):
        with self.assertRaises(ValidationError):
            GameConfig(paylines=[[0, 0, 0, 0, 0]] * 13)

    def test_payline_must_stay_on_grid(self):
        lines = [list(p) for p in default_game_config().paylines]
        lines[0] = [0, 0, 4, 0, 0]
        with self.assertRaises(ValidationError):
            GameConfig(paylines=lines)

    def test_bet_limits_consistent(self):
        with self.assertRaises(ValidationError):
            GameConfig(min_bet=5, max_bet=1)

    def test_config_is_frozen(self):
        config = default_game_config()
        with self.assertRaises(ValidationError):
            config.min_bet = 1.0

    def test_settings_layer_onto_config(self):
        with patch.object(SlotSettings, "MAX_FREE_SPINS", 50), \
                patch.object(SlotSettings, "MAX_BET", 25.0):
            config = SlotSettings.game_config()
        self.assertEqual(config.max_free_spins, 50)
        self.assertEqual(config.max_bet, 25.0)
        self.assertEqual(len(config.paytable), 10)

    def test_bad_settings_raise_invalid_configuration(self):
        with patch.object(SlotSettings, "MIN_BET", 500.0):
            with self.assertRaises(InvalidConfiguration) as ctx:
                SlotSettings.game_config()
        self.assertTrue(ctx.exception.details["errors"])

    def test_get_engine_applies_settings(self):
        with patch.object(SlotSettings, "MAX_FRAME_VALUE", 64):
            engine = get_engine()
        self.assertEqual(engine.config.max_frame_value, 64)
        explicit = GameConfig(max_frame_value=32)
        self.assertIs(get_engine(explicit).config, explicit)

    def test_error_payloads(self):
        err = ConcurrentSpinConflict("busy", session_id="s1")
        self.assertTrue(err.retryable)
        self.assertEqual(err.to_dict()["error"], "concurrent_spin_conflict")
        self.assertEqual(err.to_dict()["session_id"], "s1")
        self.assertFalse(InvalidBetAmount("no").retryable)


# ============================================================
# Simulation Tests
# ============================================================

class TestSimulation(unittest.TestCase):

    def test_categorize_win(self):
        self.assertEqual(categorize_win(0), "0x")
        self.assertEqual(categorize_win(0.5), "0-1x")
        self.assertEqual(categorize_win(3), "2-5x")
        self.assertEqual(categorize_win(5000), "1000x+")

    def test_base_simulation_smoke(self):
        result = simulate(spins=300, seed=1)
        self.assertEqual(result.rounds, 300)
        self.assertGreaterEqual(result.rtp, 0.0)
        self.assertAlmostEqual(sum(result.distribution.values()), 1.0, places=4)
        lo, hi = result.confidence_95
        self.assertLessEqual(lo, hi)

    def test_super_buy_simulation_smoke(self):
        result = simulate_bonus_buy("super", rounds=3, seed=2)
        self.assertEqual(result.rounds, 3)
        self.assertAlmostEqual(result.bonus_frequency["velvet_nights"], 1.0)
        self.assertEqual(result.total_wagered, 900.0)

    def test_simulation_deterministic(self):
        a = simulate(spins=150, seed=9).to_dict()
        b = simulate(spins=150, seed=9).to_dict()
        self.assertEqual(a, b)


if __name__ == "__main__":
    unittest.main(verbosity=2)
