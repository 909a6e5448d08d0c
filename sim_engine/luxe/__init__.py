"""
LUXE — Slot Outcome Engine

Authoritative outcome engine for The Luxe: 4x5 grid, 14 paylines,
wild/scatter, multiplier and jackpot frames, and three free-spin tiers with
sticky escalating frames.

Usage:
    from sim_engine.luxe import LuxeEngine, SeededRandomSource
    engine = LuxeEngine()
    result = engine.spin(bet=1.0, rng=SeededRandomSource(42))
    if result.state.active:
        result = engine.spin(bet=1.0, rng=SeededRandomSource(43), state=result.state)
"""

from sim_engine.luxe.bonus import BonusState
from sim_engine.luxe.engine import LuxeEngine, SpinOutcome, SpinResult
from sim_engine.luxe.errors import (
    BonusStateMismatch,
    ConcurrentSpinConflict,
    InsufficientBalance,
    InternalRNGFailure,
    InvalidBetAmount,
    InvalidBonusType,
    SessionClosed,
    SessionNotFound,
    SlotEngineError,
)
from sim_engine.luxe.rng import HmacRandomStream, ProvablyFairRNG, SeededRandomSource
from sim_engine.luxe.symbols import (
    BonusMode, Cell, Frame, FrameType, Grid, StickyFrame, Symbol,
)


def get_engine(config=None) -> LuxeEngine:
    """Engine with operator settings applied when no config is given."""
    if config is None:
        from config.settings import SlotSettings
        config = SlotSettings.game_config()
    return LuxeEngine(config)
