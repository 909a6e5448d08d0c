"""
LUXE — Slot Platform (Sessions, Ledger, Resume Controller)

Server-side wrapper around the outcome engine for real-money play:

  1. Sessions: create → spin / buy bonus → close → verify
  2. Provably fair draws: every spin's stream is derived from the session's
     server seed, client seed and persisted nonce
  3. Ledger: balance debits and credits, applied by the platform (the
     engine only reports amounts)
  4. Bonus state: persisted after every committed spin, keyed by session,
     updated by compare-and-swap on its version
  5. Resume: a bonus spin must carry the exact persisted context; stale or
     divergent requests are rejected and the caller re-fetches the truth

A spin is all-or-nothing. Validation happens before any draw, the outcome
is computed in memory, and the nonce bump, bonus-state swap, debit, credit
and round log are written in one transaction.

Usage:
    from tools.slot_platform import SlotPlatform, SpinRequest
    platform = SlotPlatform(db_path="luxe.db")
    session = platform.create_session(user_id="u1", balance=100)
    outcome = platform.spin(SpinRequest(session.id, bet_amount=1.0))
    while outcome.spins_remaining:
        outcome = platform.spin(SpinRequest(
            session.id, bet_amount=1.0, is_bonus_spin=True,
            sticky_frames=outcome.updated_sticky_frames,
            expected_version=outcome.state_version))
    platform.close_session(session.id)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from config.database import init_db, open_db, transaction
from config.settings import SlotSettings
from config.slot_schema import GameConfig
from sim_engine.luxe import get_engine
from sim_engine.luxe.bonus import BonusState
from sim_engine.luxe.engine import LuxeEngine, SpinOutcome, SpinResult, check_resume_context
from sim_engine.luxe.errors import (
    BonusStateMismatch, ConcurrentSpinConflict, InsufficientBalance,
    InvalidBonusType, SessionClosed, SessionNotFound,
)
from sim_engine.luxe.rng import HmacRandomStream, ProvablyFairRNG
from sim_engine.luxe.symbols import StickyFrame

logger = logging.getLogger("luxe.platform")


# ═══════════════════════════════════════════════════════════════
# Data Models
# ═══════════════════════════════════════════════════════════════

@dataclass
class PlayerSession:
    id: str
    user_id: str
    balance: float
    initial_balance: float
    server_seed_hash: str
    client_seed: str
    nonce: int = 0
    rounds_played: int = 0
    total_wagered: float = 0.0
    total_won: float = 0.0
    status: str = "active"  # active / closed
    created_at: str = ""
    closed_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = _now()

    @classmethod
    def from_row(cls, row: dict) -> "PlayerSession":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            balance=row["balance"],
            initial_balance=row["initial_balance"],
            server_seed_hash=row["server_seed_hash"],
            client_seed=row["client_seed"],
            nonce=row["nonce"],
            rounds_played=row["rounds_played"],
            total_wagered=row["total_wagered"],
            total_won=row["total_won"],
            status=row["status"],
            created_at=row["created_at"] or "",
            closed_at=row["closed_at"] or "",
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SpinRequest:
    session_id: str
    bet_amount: float
    is_bonus_spin: bool = False
    sticky_frames: Optional[tuple[StickyFrame, ...]] = None
    expected_version: Optional[int] = None
    expected_spins_remaining: Optional[int] = None
    expected_accumulated_win: Optional[float] = None

    @property
    def carries_run_position(self) -> bool:
        """A bonus spin must pin the run position it was issued against."""
        return self.expected_version is not None or (
            self.expected_spins_remaining is not None
            and self.expected_accumulated_win is not None)

    @classmethod
    def from_dict(cls, data: dict) -> "SpinRequest":
        frames = data.get("sticky_frames")
        return cls(
            session_id=data["session_id"],
            bet_amount=data["bet_amount"],
            is_bonus_spin=bool(data.get("is_bonus_spin", False)),
            sticky_frames=(tuple(StickyFrame.from_dict(f) for f in frames)
                           if frames is not None else None),
            expected_version=data.get("expected_version"),
            expected_spins_remaining=data.get("expected_spins_remaining"),
            expected_accumulated_win=data.get("expected_accumulated_win"),
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ═══════════════════════════════════════════════════════════════
# Database Schema
# ═══════════════════════════════════════════════════════════════

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS slot_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    balance REAL NOT NULL,
    initial_balance REAL NOT NULL,
    server_seed TEXT NOT NULL,
    server_seed_hash TEXT NOT NULL,
    client_seed TEXT NOT NULL,
    nonce INTEGER DEFAULT 0,
    rounds_played INTEGER DEFAULT 0,
    total_wagered REAL DEFAULT 0,
    total_won REAL DEFAULT 0,
    status TEXT DEFAULT 'active',
    created_at TEXT,
    closed_at TEXT
);

CREATE TABLE IF NOT EXISTS bonus_states (
    session_id TEXT PRIMARY KEY,
    mode TEXT NOT NULL DEFAULT 'none',
    spins_remaining INTEGER NOT NULL DEFAULT 0,
    accumulated_win REAL NOT NULL DEFAULT 0,
    bet_amount REAL NOT NULL DEFAULT 0,
    spins_played INTEGER NOT NULL DEFAULT 0,
    sticky_json TEXT NOT NULL DEFAULT '[]',
    version INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT,
    FOREIGN KEY (session_id) REFERENCES slot_sessions(id)
);

CREATE TABLE IF NOT EXISTS slot_rounds (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    nonce INTEGER NOT NULL,
    round_type TEXT NOT NULL,
    mode TEXT NOT NULL,
    bet_amount REAL NOT NULL,
    debit REAL NOT NULL DEFAULT 0,
    credit REAL NOT NULL DEFAULT 0,
    payout REAL NOT NULL DEFAULT 0,
    balance_after REAL NOT NULL,
    outcome_json TEXT NOT NULL,
    combined_hash TEXT NOT NULL,
    created_at TEXT,
    UNIQUE (session_id, nonce),
    FOREIGN KEY (session_id) REFERENCES slot_sessions(id)
);

CREATE INDEX IF NOT EXISTS idx_rounds_session ON slot_rounds(session_id);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON slot_sessions(user_id);
"""


# ═══════════════════════════════════════════════════════════════
# Collaborators
# ═══════════════════════════════════════════════════════════════

class SqliteLedger:
    """Session balance ledger.

    Works on the caller's connection so a debit and credit join the spin's
    transaction.
    """

    def balance(self, db: sqlite3.Connection, session_id: str) -> float:
        row = db.execute("SELECT balance FROM slot_sessions WHERE id=?",
                         (session_id,)).fetchone()
        if not row:
            raise SessionNotFound(f"Session not found: {session_id}")
        return row["balance"]

    def debit(self, db: sqlite3.Connection, session_id: str, amount: float) -> float:
        amount = round(amount, 2)
        cur = db.execute(
            "UPDATE slot_sessions SET balance=ROUND(balance-?, 2) WHERE id=? AND balance>=?",
            (amount, session_id, amount),
        )
        if cur.rowcount != 1:
            raise InsufficientBalance(self.balance(db, session_id), amount)
        return self.balance(db, session_id)

    def credit(self, db: sqlite3.Connection, session_id: str, amount: float) -> float:
        db.execute(
            "UPDATE slot_sessions SET balance=ROUND(balance+?, 2) WHERE id=?",
            (round(amount, 2), session_id),
        )
        return self.balance(db, session_id)


class BonusStateStore:
    """Bonus state keyed by session, with version-checked updates."""

    def create(self, db: sqlite3.Connection, session_id: str) -> None:
        db.execute(
            "INSERT INTO bonus_states (session_id, updated_at) VALUES (?, ?)",
            (session_id, _now()),
        )

    def get(self, db: sqlite3.Connection, session_id: str) -> BonusState:
        row = db.execute("SELECT * FROM bonus_states WHERE session_id=?",
                         (session_id,)).fetchone()
        if not row:
            raise SessionNotFound(f"No bonus state for session: {session_id}")
        return BonusState.from_dict({
            "mode": row["mode"],
            "spins_remaining": row["spins_remaining"],
            "accumulated_win": row["accumulated_win"],
            "sticky_frames": json.loads(row["sticky_json"]),
            "bet_amount": row["bet_amount"],
            "spins_played": row["spins_played"],
            "version": row["version"],
        })

    def compare_and_swap(self, db: sqlite3.Connection, session_id: str,
                         expected_version: int, state: BonusState) -> bool:
        cur = db.execute(
            """UPDATE bonus_states
               SET mode=?, spins_remaining=?, accumulated_win=?, bet_amount=?,
                   spins_played=?, sticky_json=?, version=?, updated_at=?
               WHERE session_id=? AND version=?""",
            (state.mode.value, state.spins_remaining, state.accumulated_win,
             state.bet_amount, state.spins_played,
             json.dumps([f.to_dict() for f in state.sticky_frames]),
             state.version, _now(), session_id, expected_version),
        )
        return cur.rowcount == 1


class SessionLeases:
    """In-flight spin registry: one request per session at a time."""

    def __init__(self):
        self._lock = threading.Lock()
        self._held: set[str] = set()

    @contextmanager
    def hold(self, session_id: str):
        with self._lock:
            if session_id in self._held:
                raise ConcurrentSpinConflict(
                    f"A spin is already in flight for session {session_id}",
                    session_id=session_id)
            self._held.add(session_id)
        try:
            yield
        finally:
            with self._lock:
                self._held.discard(session_id)

    def is_held(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._held


# ═══════════════════════════════════════════════════════════════
# Platform
# ═══════════════════════════════════════════════════════════════

class SlotPlatform:
    """Authoritative server side of The Luxe."""

    def __init__(self, db_path: Optional[str] = None, config: Optional[GameConfig] = None,
                 engine: Optional[LuxeEngine] = None,
                 rng: Optional[ProvablyFairRNG] = None):
        self.db_path = db_path or SlotSettings.DB_PATH
        self.engine = engine or get_engine(config)
        self.rng = rng or ProvablyFairRNG()
        self.ledger = SqliteLedger()
        self.store = BonusStateStore()
        self._leases = SessionLeases()
        init_db(self.db_path, SCHEMA_SQL)

    def _db(self) -> sqlite3.Connection:
        return open_db(self.db_path)

    def _load_session(self, db: sqlite3.Connection, session_id: str,
                      require_active: bool = True) -> dict:
        row = db.execute("SELECT * FROM slot_sessions WHERE id=?",
                         (session_id,)).fetchone()
        if not row:
            raise SessionNotFound(f"Session not found: {session_id}")
        if require_active and row["status"] != "active":
            raise SessionClosed(f"Session {session_id} is {row['status']}")
        return row

    # ─── Session Management ───────────────────────────────────

    def create_session(self, user_id: str, balance: float,
                       client_seed: Optional[str] = None) -> PlayerSession:
        """Open a provably fair session; the server seed stays secret until close."""
        seeds = self.rng.new_seeds(client_seed)
        session = PlayerSession(
            id=str(uuid.uuid4())[:12],
            user_id=user_id,
            balance=round(balance, 2),
            initial_balance=round(balance, 2),
            server_seed_hash=seeds.server_seed_hash,
            client_seed=seeds.client_seed,
        )
        db = self._db()
        try:
            with transaction(db):
                db.execute(
                    """INSERT INTO slot_sessions
                       (id, user_id, balance, initial_balance, server_seed,
                        server_seed_hash, client_seed, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (session.id, user_id, session.balance, session.balance,
                     seeds.server_seed, seeds.server_seed_hash, seeds.client_seed,
                     session.created_at),
                )
                self.store.create(db, session.id)
        finally:
            db.close()
        logger.info(f"Session {session.id} opened for {user_id} (balance={session.balance:.2f})")
        return session

    def get_session(self, session_id: str) -> PlayerSession:
        db = self._db()
        try:
            return PlayerSession.from_row(self._load_session(db, session_id, require_active=False))
        finally:
            db.close()

    def get_bonus_state(self, session_id: str) -> BonusState:
        """Authoritative bonus state; re-fetch this after a BonusStateMismatch."""
        db = self._db()
        try:
            self._load_session(db, session_id, require_active=False)
            return self.store.get(db, session_id)
        finally:
            db.close()

    def resume(self, session_id: str) -> dict:
        """Everything a reconnecting client needs to continue a bonus run."""
        db = self._db()
        try:
            row = self._load_session(db, session_id, require_active=False)
            state = self.store.get(db, session_id)
            last = db.execute(
                "SELECT outcome_json FROM slot_rounds WHERE session_id=? ORDER BY nonce DESC LIMIT 1",
                (session_id,),
            ).fetchone()
        finally:
            db.close()
        return {
            "session_id": session_id,
            "balance": row["balance"],
            "bonus_state": state.to_dict(),
            "in_bonus": state.active,
            "last_outcome": json.loads(last["outcome_json"]) if last else None,
        }

    def close_session(self, session_id: str) -> dict:
        """Close a session and reveal the server seed. Refused mid-bonus."""
        db = self._db()
        try:
            with transaction(db):
                row = self._load_session(db, session_id)
                state = self.store.get(db, session_id)
                if state.active:
                    raise BonusStateMismatch(
                        f"Cannot close session {session_id}: "
                        f"{state.spins_remaining} bonus spins remaining",
                        authoritative=state.to_dict())
                db.execute("UPDATE slot_sessions SET status='closed', closed_at=? WHERE id=?",
                           (_now(), session_id))
        finally:
            db.close()

        profit = row["total_won"] - row["total_wagered"]
        logger.info(f"Session {session_id} closed: rounds={row['rounds_played']} "
                    f"wagered={row['total_wagered']:.2f} won={row['total_won']:.2f}")
        return {
            "session_id": session_id,
            "server_seed": row["server_seed"],
            "server_seed_hash": row["server_seed_hash"],
            "client_seed": row["client_seed"],
            "rounds_played": row["rounds_played"],
            "total_wagered": row["total_wagered"],
            "total_won": row["total_won"],
            "profit": round(profit, 2),
            "balance": row["balance"],
        }

    # ─── Play ─────────────────────────────────────────────────

    def spin(self, request: SpinRequest) -> SpinOutcome:
        """Serve one spin request exactly once.

        Raises:
            InvalidBetAmount, InsufficientBalance, BonusStateMismatch,
            ConcurrentSpinConflict, InternalRNGFailure, SessionNotFound,
            SessionClosed. Nothing is mutated when any of these is raised.
        """
        with self._leases.hold(request.session_id):
            db = self._db()
            try:
                session = self._load_session(db, request.session_id)
                bet = self.engine.validate_bet(request.bet_amount)
                state = self.store.get(db, request.session_id)
                self._check_resume(state, request, bet)
                if not request.is_bonus_spin and session["balance"] < round(bet, 2):
                    raise InsufficientBalance(session["balance"], bet)

                stream = self.rng.stream(session["server_seed"], session["client_seed"],
                                         session["nonce"])
                result = self.engine.spin(bet, stream, state,
                                          is_bonus_spin=request.is_bonus_spin,
                                          sticky_frames=request.sticky_frames)
                round_type = "bonus" if request.is_bonus_spin else "base"
                return self._commit(db, session, state, result, stream, round_type)
            finally:
                db.close()

    def buy_bonus(self, session_id: str, bet_amount: float, bonus_type: str) -> SpinOutcome:
        """Debit 100x ("regular") or 300x ("super") bet and enter a bonus run."""
        if bonus_type not in ("regular", "super"):
            raise InvalidBonusType(f"Unknown bonus type: {bonus_type}")
        with self._leases.hold(session_id):
            db = self._db()
            try:
                session = self._load_session(db, session_id)
                bet = self.engine.validate_bet(bet_amount)
                state = self.store.get(db, session_id)
                try:
                    check_resume_context(state, False, bet)
                except BonusStateMismatch:
                    logger.warning(f"Bonus buy rejected for {session_id}: bonus already running")
                    raise
                cost = self.engine.bonus_buy_cost(bet, bonus_type)
                if session["balance"] < round(cost, 2):
                    raise InsufficientBalance(session["balance"], cost)

                stream = self.rng.stream(session["server_seed"], session["client_seed"],
                                         session["nonce"])
                result = self.engine.buy_bonus(bet, bonus_type, stream, state)
                return self._commit(db, session, state, result, stream, "buy")
            finally:
                db.close()

    def _check_resume(self, state: BonusState, request: SpinRequest, bet: float) -> None:
        try:
            if request.is_bonus_spin:
                if request.sticky_frames is None:
                    raise BonusStateMismatch("Bonus spin must carry its sticky frames",
                                             authoritative=state.to_dict())
                if not request.carries_run_position:
                    raise BonusStateMismatch(
                        "Bonus spin must carry expected_version, or expected_spins_remaining "
                        "with expected_accumulated_win",
                        authoritative=state.to_dict())
            check_resume_context(
                state, request.is_bonus_spin, bet, request.sticky_frames,
                spins_remaining=request.expected_spins_remaining,
                accumulated_win=request.expected_accumulated_win,
                version=request.expected_version,
            )
        except BonusStateMismatch as e:
            logger.warning(f"Resume rejected for {request.session_id}: {e.message}")
            raise

    def _commit(self, db: sqlite3.Connection, session: dict, prior: BonusState,
                result: SpinResult, stream: HmacRandomStream, round_type: str) -> SpinOutcome:
        """Persist a computed outcome atomically."""
        sid = session["id"]
        nonce = session["nonce"]
        outcome = result.outcome
        credit = round(outcome.payout_due, 2)

        with transaction(db):
            cur = db.execute("UPDATE slot_sessions SET nonce=nonce+1 WHERE id=? AND nonce=?",
                             (sid, nonce))
            if cur.rowcount != 1:
                raise ConcurrentSpinConflict(f"Session {sid} advanced past nonce {nonce}",
                                             session_id=sid)
            if result.state != prior and not self.store.compare_and_swap(
                    db, sid, prior.version, result.state):
                raise ConcurrentSpinConflict(f"Bonus state for {sid} changed concurrently",
                                             session_id=sid)
            if outcome.cost:
                self.ledger.debit(db, sid, outcome.cost)
            if credit:
                self.ledger.credit(db, sid, credit)
            balance = self.ledger.balance(db, sid)

            outcome = replace(outcome, nonce=nonce, combined_hash=stream.combined_hash,
                              new_balance=balance)
            db.execute(
                """INSERT INTO slot_rounds
                   (id, session_id, nonce, round_type, mode, bet_amount, debit, credit,
                    payout, balance_after, outcome_json, combined_hash, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (str(uuid.uuid4())[:10], sid, nonce, round_type, outcome.mode.value,
                 outcome.bet_amount, round(outcome.cost, 2), credit, outcome.payout,
                 balance, json.dumps(outcome.to_dict()), stream.combined_hash, _now()),
            )
            db.execute(
                """UPDATE slot_sessions
                   SET rounds_played=rounds_played+1,
                       total_wagered=total_wagered+?, total_won=total_won+?
                   WHERE id=?""",
                (round(outcome.cost, 2), credit, sid),
            )

        if outcome.bonus_trigger is not None:
            logger.info(f"Session {sid}: {outcome.bonus_trigger.display_name} awarded "
                        f"({outcome.free_spins_awarded} spins, {round_type})")
        if outcome.bonus_complete:
            logger.info(f"Session {sid}: bonus paid {credit:.2f}")
        return outcome

    # ─── Verification & History ───────────────────────────────

    def get_round(self, session_id: str, nonce: int) -> Optional[dict]:
        """A committed outcome, for clients that lost the response."""
        db = self._db()
        try:
            row = db.execute(
                "SELECT outcome_json FROM slot_rounds WHERE session_id=? AND nonce=?",
                (session_id, nonce),
            ).fetchone()
        finally:
            db.close()
        return json.loads(row["outcome_json"]) if row else None

    def round_history(self, session_id: str, limit: int = 50) -> list[dict]:
        db = self._db()
        try:
            rows = db.execute(
                """SELECT nonce, round_type, mode, bet_amount, debit, credit, payout,
                          balance_after, combined_hash, created_at
                   FROM slot_rounds WHERE session_id=? ORDER BY nonce DESC LIMIT ?""",
                (session_id, limit),
            ).fetchall()
        finally:
            db.close()
        return [dict(r) for r in rows]

    def verify_round(self, session_id: str, nonce: int) -> dict:
        """Verify a round's hash once the session is closed and its seed revealed."""
        db = self._db()
        try:
            sess = self._load_session(db, session_id, require_active=False)
            if sess["status"] != "closed":
                raise SessionClosed("Session must be closed to verify rounds")
            rnd = db.execute(
                "SELECT * FROM slot_rounds WHERE session_id=? AND nonce=?",
                (session_id, nonce),
            ).fetchone()
        finally:
            db.close()
        if not rnd:
            raise SessionNotFound(f"Round {nonce} not found in session {session_id}")

        expected = self.rng.round_hash(sess["server_seed"], sess["client_seed"], nonce)
        return {
            "verified": ProvablyFairRNG.verify_round(
                sess["server_seed"], sess["client_seed"], nonce, rnd["combined_hash"]),
            "server_seed": sess["server_seed"],
            "client_seed": sess["client_seed"],
            "nonce": nonce,
            "expected_hash": expected,
            "stored_hash": rnd["combined_hash"],
            "outcome": json.loads(rnd["outcome_json"]),
            "payout": rnd["payout"],
        }

    def replay_round(self, session_id: str, nonce: int, prior_state: BonusState,
                     bet: float) -> SpinOutcome:
        """Recompute a closed session's round from revealed seeds."""
        db = self._db()
        try:
            sess = self._load_session(db, session_id, require_active=False)
        finally:
            db.close()
        if sess["status"] != "closed":
            raise SessionClosed("Session must be closed to replay rounds")
        stream = self.rng.stream(sess["server_seed"], sess["client_seed"], nonce)
        return self.engine.spin(bet, stream, prior_state).outcome
