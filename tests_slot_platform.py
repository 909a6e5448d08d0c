#!/usr/bin/env python3
"""
Tests for the slot platform: sessions, ledger, bonus persistence and resume.

Validates:
1.  Insufficient balance is rejected before any draw, nothing mutated
2.  Base spins debit the bet and credit the payout in one commit
3.  Bonus buys debit 100x / 300x bet and persist the new run
4.  Bonus spins credit nothing until the run's last spin
5.  Divergent bonus context is rejected with the authoritative state
6.  A second in-flight spin for a session is a retryable conflict
7.  A failure mid-commit rolls back; the retry replays the same nonce
8.  RNG failures leave the session untouched
9.  Closing reveals the seed; every round verifies afterwards
"""

import sqlite3
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.database import open_db
from sim_engine.luxe import (
    BonusMode, BonusStateMismatch, ConcurrentSpinConflict, InsufficientBalance,
    InternalRNGFailure, InvalidBetAmount, InvalidBonusType, ProvablyFairRNG,
    SessionClosed, SessionNotFound,
)
from tools.slot_platform import SlotPlatform, SpinRequest

MAX_ROUNDS = 2000


def _settle(platform: SlotPlatform, session_id: str, bet: float):
    """Play out any running bonus; returns the last outcome (or None)."""
    outcome = None
    for _ in range(MAX_ROUNDS):
        state = platform.get_bonus_state(session_id)
        if not state.active:
            return outcome
        outcome = platform.spin(SpinRequest(session_id, bet, is_bonus_spin=True,
                                            sticky_frames=state.sticky_frames,
                                            expected_version=state.version))
    raise AssertionError("bonus run did not finish")


class PlatformTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = str(Path(self._tmp.name) / "luxe_test.db")
        self.platform = SlotPlatform(db_path=self.db_path)

    def tearDown(self):
        self._tmp.cleanup()

    def _round_count(self, session_id: str) -> int:
        db = open_db(self.db_path)
        try:
            return db.execute("SELECT COUNT(*) AS n FROM slot_rounds WHERE session_id=?",
                              (session_id,)).fetchone()["n"]
        finally:
            db.close()

    def _server_seed(self, session_id: str) -> str:
        db = open_db(self.db_path)
        try:
            return db.execute("SELECT server_seed FROM slot_sessions WHERE id=?",
                              (session_id,)).fetchone()["server_seed"]
        finally:
            db.close()


# ============================================================
# Sessions & Base Spins
# ============================================================

class TestSessions(PlatformTestCase):

    def test_create_session(self):
        session = self.platform.create_session("u1", 100, client_seed="abc")
        self.assertEqual(session.balance, 100.0)
        self.assertEqual(session.client_seed, "abc")
        self.assertEqual(session.nonce, 0)
        state = self.platform.get_bonus_state(session.id)
        self.assertFalse(state.active)
        self.assertEqual(state.version, 0)

    def test_unknown_session(self):
        with self.assertRaises(SessionNotFound):
            self.platform.spin(SpinRequest("missing", 1.0))
        with self.assertRaises(SessionNotFound):
            self.platform.get_bonus_state("missing")

    def test_insufficient_balance_rejected_before_draw(self):
        session = self.platform.create_session("u1", 0.40)
        with patch.object(self.platform.rng, "stream") as stream:
            with self.assertRaises(InsufficientBalance) as ctx:
                self.platform.spin(SpinRequest(session.id, 0.50))
        stream.assert_not_called()
        self.assertFalse(ctx.exception.retryable)
        after = self.platform.get_session(session.id)
        self.assertEqual(after.balance, 0.40)
        self.assertEqual(after.nonce, 0)
        self.assertEqual(self._round_count(session.id), 0)

    def test_invalid_bet_rejected(self):
        session = self.platform.create_session("u1", 100)
        with self.assertRaises(InvalidBetAmount):
            self.platform.spin(SpinRequest(session.id, 0.0))
        self.assertEqual(self.platform.get_session(session.id).nonce, 0)

    def test_sub_cent_bet_rejected(self):
        session = self.platform.create_session("u1", 100)
        with patch.object(self.platform.rng, "stream") as stream:
            with self.assertRaises(InvalidBetAmount):
                self.platform.spin(SpinRequest(session.id, 0.125))
            with self.assertRaises(InvalidBetAmount):
                self.platform.buy_bonus(session.id, 0.125, "regular")
        stream.assert_not_called()
        after = self.platform.get_session(session.id)
        self.assertEqual((after.nonce, after.balance), (0, 100.0))
        self.assertEqual(self._round_count(session.id), 0)
        self.assertFalse(self.platform.get_bonus_state(session.id).active)

    def test_whole_cent_bet_debited_exactly(self):
        session = self.platform.create_session("u1", 100)
        outcome = self.platform.spin(SpinRequest(session.id, 0.13))
        self.assertEqual(outcome.cost, 0.13)
        expected = round(100 - 0.13 + round(outcome.payout_due, 2), 2)
        self.assertAlmostEqual(outcome.new_balance, expected, places=2)

    def test_base_spin_settles_ledger(self):
        session = self.platform.create_session("u1", 100)
        outcome = self.platform.spin(SpinRequest(session.id, 1.0))
        expected = round(100 - 1.0 + round(outcome.payout_due, 2), 2)
        self.assertAlmostEqual(outcome.new_balance, expected, places=2)
        self.assertEqual(outcome.nonce, 0)
        self.assertEqual(outcome.cost, 1.0)
        self.assertEqual(outcome.combined_hash,
                         ProvablyFairRNG.round_hash(self._server_seed(session.id),
                                                    session.client_seed, 0))
        after = self.platform.get_session(session.id)
        self.assertEqual(after.nonce, 1)
        self.assertEqual(after.rounds_played, 1)
        self.assertAlmostEqual(after.total_wagered, 1.0)
        self.assertEqual(self.platform.get_round(session.id, 0)["nonce"], 0)

    def test_nonce_advances_per_round(self):
        session = self.platform.create_session("u1", 500)
        nonces = []
        for _ in range(5):
            _settle(self.platform, session.id, 1.0)
            nonces.append(self.platform.spin(SpinRequest(session.id, 1.0)).nonce)
        self.assertEqual(nonces, sorted(set(nonces)))
        history = self.platform.round_history(session.id, limit=MAX_ROUNDS)
        self.assertEqual(len(history), self.platform.get_session(session.id).nonce)

    def test_spin_request_from_dict(self):
        req = SpinRequest.from_dict({
            "session_id": "s1", "bet_amount": 2,
            "is_bonus_spin": True,
            "sticky_frames": [{"row": 0, "col": 2, "type": "multiplier", "value": "5"}],
            "expected_spins_remaining": 4, "expected_accumulated_win": 12.5,
        })
        self.assertTrue(req.is_bonus_spin)
        self.assertTrue(req.carries_run_position)
        self.assertEqual(req.expected_accumulated_win, 12.5)
        self.assertEqual(req.sticky_frames[0].value, 5)
        self.assertIsNone(SpinRequest.from_dict({"session_id": "s", "bet_amount": 1}).sticky_frames)


# ============================================================
# Bonus Buys & Bonus Runs
# ============================================================

class TestBonusRuns(PlatformTestCase):

    def test_regular_buy_debits_hundred_bets(self):
        session = self.platform.create_session("u1", 1000)
        outcome = self.platform.buy_bonus(session.id, 1.0, "regular")
        self.assertEqual(outcome.cost, 100.0)
        self.assertAlmostEqual(outcome.new_balance, 900.0)
        state = self.platform.get_bonus_state(session.id)
        self.assertIn(state.mode, (BonusMode.TIER1, BonusMode.TIER2))
        self.assertEqual(state.version, 1)
        self.assertEqual(state.bet_amount, 1.0)

    def test_super_buy_debits_three_hundred_bets(self):
        session = self.platform.create_session("u1", 1000)
        outcome = self.platform.buy_bonus(session.id, 2.0, "super")
        self.assertAlmostEqual(outcome.new_balance, 400.0)
        state = self.platform.get_bonus_state(session.id)
        self.assertEqual(state.mode, BonusMode.TIER3)
        self.assertEqual(len(state.sticky_frames), 20)

    def test_buy_needs_funds(self):
        session = self.platform.create_session("u1", 50)
        with self.assertRaises(InsufficientBalance):
            self.platform.buy_bonus(session.id, 1.0, "regular")
        self.assertEqual(self.platform.get_session(session.id).balance, 50.0)
        self.assertFalse(self.platform.get_bonus_state(session.id).active)

    def test_unknown_buy_type(self):
        session = self.platform.create_session("u1", 1000)
        with self.assertRaises(InvalidBonusType):
            self.platform.buy_bonus(session.id, 1.0, "mega")

    def test_bonus_run_credits_once(self):
        session = self.platform.create_session("u1", 1000)
        self.platform.buy_bonus(session.id, 1.0, "regular")
        credited_early = []
        last = None
        for _ in range(MAX_ROUNDS):
            state = self.platform.get_bonus_state(session.id)
            if not state.active:
                break
            last = self.platform.spin(SpinRequest(
                session.id, 1.0, is_bonus_spin=True,
                sticky_frames=state.sticky_frames,
                expected_version=state.version,
                expected_spins_remaining=state.spins_remaining))
            if not last.bonus_complete:
                credited_early.append(last.new_balance != 900.0)
        self.assertFalse(any(credited_early))
        self.assertTrue(last.bonus_complete)
        self.assertAlmostEqual(last.new_balance, 900.0 + round(last.payout_due, 2), places=2)
        self.assertAlmostEqual(self.platform.get_session(session.id).balance, last.new_balance)

    def test_resume_reports_running_bonus(self):
        session = self.platform.create_session("u1", 1000)
        self.platform.buy_bonus(session.id, 1.0, "super")
        info = self.platform.resume(session.id)
        self.assertTrue(info["in_bonus"])
        self.assertEqual(info["bonus_state"]["mode"], "velvet_nights")
        self.assertEqual(info["last_outcome"]["cost"], 300.0)


# ============================================================
# Resume Validation
# ============================================================

class TestResumeValidation(PlatformTestCase):

    def setUp(self):
        super().setUp()
        self.session = self.platform.create_session("u1", 1000)
        self.platform.buy_bonus(self.session.id, 1.0, "regular")
        self.state = self.platform.get_bonus_state(self.session.id)

    def _assert_untouched(self):
        self.assertEqual(self.platform.get_bonus_state(self.session.id), self.state)
        after = self.platform.get_session(self.session.id)
        self.assertEqual(after.nonce, 1)
        self.assertAlmostEqual(after.balance, 900.0)

    def test_base_spin_rejected_mid_bonus(self):
        with self.assertRaises(BonusStateMismatch) as ctx:
            self.platform.spin(SpinRequest(self.session.id, 1.0))
        self.assertEqual(ctx.exception.authoritative["spins_remaining"],
                         self.state.spins_remaining)
        self._assert_untouched()

    def test_bonus_spin_needs_sticky_frames(self):
        with self.assertRaises(BonusStateMismatch):
            self.platform.spin(SpinRequest(self.session.id, 1.0, is_bonus_spin=True,
                                           expected_version=self.state.version))
        self._assert_untouched()

    def test_bonus_spin_needs_run_position(self):
        with self.assertRaises(BonusStateMismatch) as ctx:
            self.platform.spin(SpinRequest(self.session.id, 1.0, is_bonus_spin=True,
                                           sticky_frames=self.state.sticky_frames))
        self.assertIn("expected_version", ctx.exception.message)
        with self.assertRaises(BonusStateMismatch):
            self.platform.spin(SpinRequest(
                self.session.id, 1.0, is_bonus_spin=True,
                sticky_frames=self.state.sticky_frames,
                expected_spins_remaining=self.state.spins_remaining))
        self._assert_untouched()

    def test_wrong_sticky_frames(self):
        with self.assertRaises(BonusStateMismatch):
            self.platform.spin(SpinRequest(self.session.id, 1.0, is_bonus_spin=True,
                                           sticky_frames=(),
                                           expected_version=self.state.version))
        self._assert_untouched()

    def test_wrong_bet(self):
        with self.assertRaises(BonusStateMismatch):
            self.platform.spin(SpinRequest(self.session.id, 2.0, is_bonus_spin=True,
                                           sticky_frames=self.state.sticky_frames,
                                           expected_version=self.state.version))
        self._assert_untouched()

    def test_stale_version(self):
        with self.assertRaises(BonusStateMismatch):
            self.platform.spin(SpinRequest(self.session.id, 1.0, is_bonus_spin=True,
                                           sticky_frames=self.state.sticky_frames,
                                           expected_version=self.state.version - 1))
        self._assert_untouched()

    def test_wrong_spins_remaining(self):
        with self.assertRaises(BonusStateMismatch):
            self.platform.spin(SpinRequest(
                self.session.id, 1.0, is_bonus_spin=True,
                sticky_frames=self.state.sticky_frames,
                expected_spins_remaining=self.state.spins_remaining + 1,
                expected_accumulated_win=self.state.accumulated_win))
        self._assert_untouched()

    def test_wrong_accumulated_win(self):
        with self.assertRaises(BonusStateMismatch):
            self.platform.spin(SpinRequest(
                self.session.id, 1.0, is_bonus_spin=True,
                sticky_frames=self.state.sticky_frames,
                expected_spins_remaining=self.state.spins_remaining,
                expected_accumulated_win=self.state.accumulated_win + 5.0))
        self._assert_untouched()

    def test_replayed_request_rejected_after_commit(self):
        request = SpinRequest(self.session.id, 1.0, is_bonus_spin=True,
                              sticky_frames=self.state.sticky_frames,
                              expected_version=self.state.version)
        self.platform.spin(request)
        committed = self.platform.get_bonus_state(self.session.id)
        before = self.platform.get_session(self.session.id)
        rounds = self._round_count(self.session.id)

        with self.assertRaises(BonusStateMismatch) as ctx:
            self.platform.spin(request)
        self.assertEqual(ctx.exception.authoritative["version"], committed.version)
        self.assertEqual(self.platform.get_bonus_state(self.session.id), committed)
        after = self.platform.get_session(self.session.id)
        self.assertEqual((after.nonce, after.balance), (before.nonce, before.balance))
        self.assertEqual(after.nonce, 2)
        self.assertEqual(self._round_count(self.session.id), rounds)

    def test_second_buy_rejected(self):
        with self.assertRaises(BonusStateMismatch):
            self.platform.buy_bonus(self.session.id, 1.0, "super")
        self._assert_untouched()

    def test_close_refused_mid_bonus(self):
        with self.assertRaises(BonusStateMismatch):
            self.platform.close_session(self.session.id)
        self.assertEqual(self.platform.get_session(self.session.id).status, "active")

    def test_matching_context_accepted(self):
        outcome = self.platform.spin(SpinRequest(
            self.session.id, 1.0, is_bonus_spin=True,
            sticky_frames=tuple(reversed(self.state.sticky_frames)),
            expected_version=self.state.version))
        self.assertEqual(outcome.nonce, 1)
        self.assertEqual(outcome.mode, self.state.mode)
        self.assertEqual(outcome.state_version, self.state.version + 1)

    def test_position_pair_accepted_without_version(self):
        outcome = self.platform.spin(SpinRequest(
            self.session.id, 1.0, is_bonus_spin=True,
            sticky_frames=self.state.sticky_frames,
            expected_spins_remaining=self.state.spins_remaining,
            expected_accumulated_win=self.state.accumulated_win))
        self.assertEqual(outcome.nonce, 1)
        self.assertEqual(self.platform.get_bonus_state(self.session.id).version,
                         outcome.state_version)


# ============================================================
# Concurrency & Atomicity
# ============================================================

class TestAtomicity(PlatformTestCase):

    def test_concurrent_spin_conflict(self):
        session = self.platform.create_session("u1", 100)
        with self.platform._leases.hold(session.id):
            with self.assertRaises(ConcurrentSpinConflict) as ctx:
                self.platform.spin(SpinRequest(session.id, 1.0))
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.platform.get_session(session.id).nonce, 0)
        self.assertFalse(self.platform._leases.is_held(session.id))
        self.platform.spin(SpinRequest(session.id, 1.0))

    def test_failed_commit_rolls_back_and_retry_replays(self):
        session = self.platform.create_session("u1", 100)
        with patch.object(self.platform.ledger, "debit",
                          side_effect=sqlite3.OperationalError("disk I/O error")):
            with self.assertRaises(sqlite3.OperationalError):
                self.platform.spin(SpinRequest(session.id, 1.0))

        after = self.platform.get_session(session.id)
        self.assertEqual(after.nonce, 0)
        self.assertEqual(after.balance, 100.0)
        self.assertEqual(after.rounds_played, 0)
        self.assertEqual(self._round_count(session.id), 0)
        self.assertEqual(self.platform.get_bonus_state(session.id).version, 0)

        retry = self.platform.spin(SpinRequest(session.id, 1.0))
        self.assertEqual(retry.nonce, 0)
        self.assertEqual(retry.combined_hash,
                         ProvablyFairRNG.round_hash(self._server_seed(session.id),
                                                    session.client_seed, 0))

    def test_failed_buy_commit_rolls_back(self):
        session = self.platform.create_session("u1", 1000)
        with patch.object(self.platform.ledger, "debit",
                          side_effect=sqlite3.OperationalError("database is locked")):
            with self.assertRaises(sqlite3.OperationalError):
                self.platform.buy_bonus(session.id, 1.0, "super")
        self.assertFalse(self.platform.get_bonus_state(session.id).active)
        self.assertEqual(self.platform.get_session(session.id).balance, 1000.0)

    def test_rng_failure_leaves_session_untouched(self):
        session = self.platform.create_session("u1", 100)
        with patch.object(self.platform.rng, "stream",
                          side_effect=InternalRNGFailure("entropy unavailable")):
            with self.assertRaises(InternalRNGFailure) as ctx:
                self.platform.spin(SpinRequest(session.id, 1.0))
        self.assertTrue(ctx.exception.retryable)
        after = self.platform.get_session(session.id)
        self.assertEqual((after.nonce, after.balance), (0, 100.0))
        self.assertEqual(self.platform.spin(SpinRequest(session.id, 1.0)).nonce, 0)


# ============================================================
# Close & Verify
# ============================================================

class TestCloseAndVerify(PlatformTestCase):

    def test_close_reveals_seed_and_rounds_verify(self):
        session = self.platform.create_session("u1", 500)
        for _ in range(3):
            _settle(self.platform, session.id, 1.0)
            self.platform.spin(SpinRequest(session.id, 1.0))
        _settle(self.platform, session.id, 1.0)

        with self.assertRaises(SessionClosed):
            self.platform.verify_round(session.id, 0)

        reveal = self.platform.close_session(session.id)
        self.assertTrue(ProvablyFairRNG.verify_server_seed(reveal["server_seed"],
                                                           session.server_seed_hash))
        rounds = self.platform.get_session(session.id).nonce
        self.assertEqual(reveal["rounds_played"], rounds)
        for nonce in range(rounds):
            self.assertTrue(self.platform.verify_round(session.id, nonce)["verified"])

    def test_closed_session_rejects_play(self):
        session = self.platform.create_session("u1", 100)
        self.platform.close_session(session.id)
        with self.assertRaises(SessionClosed):
            self.platform.spin(SpinRequest(session.id, 1.0))
        with self.assertRaises(SessionClosed):
            self.platform.close_session(session.id)

    def test_replay_matches_committed_round(self):
        session = self.platform.create_session("u1", 100)
        prior = self.platform.get_bonus_state(session.id)
        outcome = self.platform.spin(SpinRequest(session.id, 1.0))
        _settle(self.platform, session.id, 1.0)
        self.platform.close_session(session.id)
        replayed = self.platform.replay_round(session.id, 0, prior, 1.0)
        self.assertEqual(replayed.grid, outcome.grid)
        self.assertAlmostEqual(replayed.payout, outcome.payout)


if __name__ == "__main__":
    unittest.main(verbosity=2)
