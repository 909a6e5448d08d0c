"""
LUXE — Game Configuration Schema

Every probability, paytable, frame pool and bonus rule the engine reads.
Tables are enumerated once at initialization as frozen pydantic models and
passed into the engine explicitly; nothing here is mutated at runtime.

Usage:
    from config.slot_schema import default_game_config
    config = default_game_config()
    json_str = config.model_dump_json(indent=2)
"""

from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ROWS = 4
COLS = 5

SYMBOL_KEYS = [
    "diamond_suit", "club_suit", "spade_suit", "heart_suit",
    "dice", "chips", "cards", "crown", "gem", "wild", "scatter",
]

# Row index per column, columns 0..4 left to right.
DEFAULT_PAYLINES = [
    [0, 0, 0, 0, 0],
    [1, 1, 1, 1, 1],
    [2, 2, 2, 2, 2],
    [3, 3, 3, 3, 3],
    [0, 1, 2, 1, 0],
    [3, 2, 1, 2, 3],
    [0, 0, 1, 0, 0],
    [3, 3, 2, 3, 3],
    [1, 0, 0, 0, 1],
    [2, 3, 3, 3, 2],
    [1, 2, 3, 2, 1],
    [2, 1, 0, 1, 2],
    [0, 1, 1, 1, 0],
    [3, 2, 2, 2, 3],
]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ═══════════════════════════════════════════════════════════════
# Sub-Models
# ═══════════════════════════════════════════════════════════════

class PaytableEntry(_Frozen):
    """Bet multiples for 3, 4 and 5 of a kind. 1-2 matches always pay 0."""
    symbol: str
    three: float = Field(0.0, ge=0)
    four: float = Field(0.0, ge=0)
    five: float = Field(0.0, ge=0)

    def multiple(self, match_count: int) -> float:
        if match_count >= 5:
            return self.five
        if match_count == 4:
            return self.four
        if match_count == 3:
            return self.three
        return 0.0


class SymbolDistribution(_Frozen):
    """Per-cell draw: scatter first, then wild, remainder uniform over regulars."""
    scatter_probability: float = Field(0.02, ge=0, le=1)
    wild_probability: float = Field(0.03, ge=0, le=1)

    @model_validator(mode="after")
    def _leaves_room_for_regulars(self):
        if self.scatter_probability + self.wild_probability >= 1.0:
            raise ValueError("scatter + wild probability must leave room for regular symbols")
        return self


class JackpotTier(_Frozen):
    name: str
    multiple: float = Field(..., gt=0)   # payout = multiple x bet
    weight: float = Field(1.0, gt=0)


class FrameConfig(_Frozen):
    base_probability: float = Field(0.12, ge=0, le=1)
    jackpot_share: float = Field(0.10, ge=0, le=1)   # rest are multipliers
    base_multiplier_weights: dict[int, float] = Field(default_factory=lambda: {
        2: 25.0, 3: 20.0, 4: 15.0, 5: 15.0, 6: 10.0,
        7: 7.0, 8: 4.0, 9: 2.5, 10: 1.5,
    })
    bonus_multiplier_weights: dict[int, float] = Field(default_factory=lambda: {
        2: 25.0, 3: 20.0, 4: 15.0, 5: 15.0, 6: 10.0,
        7: 7.0, 8: 4.0, 9: 2.5, 10: 1.5,
        25: 0.14, 50: 0.03, 100: 0.03,
    })

    @field_validator("base_multiplier_weights", "bonus_multiplier_weights")
    @classmethod
    def _valid_pool(cls, v: dict[int, float]) -> dict[int, float]:
        if not v:
            raise ValueError("multiplier pool must not be empty")
        if any(value < 1 for value in v):
            raise ValueError("multiplier values must be >= 1")
        if any(w <= 0 for w in v.values()):
            raise ValueError("multiplier weights must be positive")
        return v


class BonusTierRules(_Frozen):
    """Rules for one free-spin tier."""
    mode: str                          # BonusMode value
    display_name: str
    free_spins: int = Field(..., ge=1)
    entry_sticky_frames: int = Field(..., ge=0)     # >= rows*cols means every cell
    frame_probability: float = Field(0.12, ge=0, le=1)
    symbols: SymbolDistribution = Field(default_factory=SymbolDistribution)
    sticky_on_retrigger: int = Field(0, ge=0)


class BonusBuyConfig(_Frozen):
    regular_cost_multiple: float = Field(100.0, gt=0)
    super_cost_multiple: float = Field(300.0, gt=0)
    # Weighted draw between tier1 and tier2 for a regular buy.
    regular_tier_weights: dict[str, float] = Field(
        default_factory=lambda: {"black_and_gold": 0.5, "golden_hits": 0.5}
    )


# ═══════════════════════════════════════════════════════════════
# Root Config
# ═══════════════════════════════════════════════════════════════

class GameConfig(_Frozen):
    game_id: str = "the_luxe"
    rows: int = ROWS
    cols: int = COLS
    paylines: list[list[int]] = Field(default_factory=lambda: [list(p) for p in DEFAULT_PAYLINES])
    paytable: list[PaytableEntry] = Field(default_factory=lambda: default_paytable())
    base_symbols: SymbolDistribution = Field(default_factory=SymbolDistribution)
    frames: FrameConfig = Field(default_factory=FrameConfig)
    jackpot_tiers: list[JackpotTier] = Field(default_factory=lambda: [
        JackpotTier(name="mini", multiple=25),
        JackpotTier(name="major", multiple=100),
        JackpotTier(name="mega", multiple=500),
        JackpotTier(name="max_win", multiple=20000),
    ])
    bonus_tiers: list[BonusTierRules] = Field(default_factory=lambda: default_bonus_tiers())
    # scatter count threshold -> extra free spins (highest threshold reached wins)
    retrigger_spins: dict[int, int] = Field(default_factory=lambda: {3: 4, 2: 2})
    bonus_buy: BonusBuyConfig = Field(default_factory=BonusBuyConfig)

    min_bet: float = Field(0.10, gt=0)
    max_bet: float = Field(100.0, gt=0)
    max_free_spins: Optional[int] = Field(None, ge=1)
    max_frame_value: int = Field(1000, ge=2)
    max_win_multiplier: Optional[float] = Field(20000.0, gt=0)

    @field_validator("paylines")
    @classmethod
    def _fixed_lines(cls, v: list[list[int]]) -> list[list[int]]:
        if len(v) != 14:
            raise ValueError(f"expected 14 paylines, got {len(v)}")
        for i, line in enumerate(v):
            if len(line) != COLS:
                raise ValueError(f"payline {i} must have {COLS} cells")
            if any(r < 0 or r >= ROWS for r in line):
                raise ValueError(f"payline {i} leaves the grid: {line}")
        return v

    @model_validator(mode="after")
    def _consistent(self):
        keys = {p.symbol for p in self.paytable}
        missing = set(SYMBOL_KEYS) - {"scatter"} - keys
        if missing:
            raise ValueError(f"paytable missing symbols: {sorted(missing)}")
        if self.min_bet > self.max_bet:
            raise ValueError("min_bet must not exceed max_bet")
        modes = {t.mode for t in self.bonus_tiers}
        if modes != {"black_and_gold", "golden_hits", "velvet_nights"}:
            raise ValueError(f"bonus tiers must cover all three modes, got {sorted(modes)}")
        unknown = set(self.bonus_buy.regular_tier_weights) - modes
        if unknown:
            raise ValueError(f"unknown bonus buy tiers: {sorted(unknown)}")
        return self

    def pay_entry(self, symbol_key: str) -> Optional[PaytableEntry]:
        for entry in self.paytable:
            if entry.symbol == symbol_key:
                return entry
        return None

    def bonus_tier(self, mode: str) -> BonusTierRules:
        for tier in self.bonus_tiers:
            if tier.mode == mode:
                return tier
        raise KeyError(mode)

    def jackpot_multiple(self, tier_name: str) -> float:
        for tier in self.jackpot_tiers:
            if tier.name == tier_name:
                return tier.multiple
        raise KeyError(tier_name)


# ═══════════════════════════════════════════════════════════════
# Defaults
# ═══════════════════════════════════════════════════════════════

def default_paytable() -> list[PaytableEntry]:
    suits = [PaytableEntry(symbol=s, three=0.02, four=0.05, five=0.10)
             for s in ("diamond_suit", "club_suit", "spade_suit", "heart_suit")]
    return suits + [
        PaytableEntry(symbol="dice", three=0.05, four=0.20, five=0.50),
        PaytableEntry(symbol="chips", three=0.10, four=0.50, five=1.50),
        PaytableEntry(symbol="cards", three=0.20, four=1.00, five=2.50),
        PaytableEntry(symbol="crown", three=1.00, four=3.00, five=10.00),
        PaytableEntry(symbol="gem", three=2.00, four=5.00, five=20.00),
        PaytableEntry(symbol="wild", three=2.00, four=5.00, five=20.00),
    ]


def default_bonus_tiers() -> list[BonusTierRules]:
    return [
        BonusTierRules(mode="black_and_gold", display_name="Black & Gold",
                       free_spins=10, entry_sticky_frames=1, sticky_on_retrigger=1),
        BonusTierRules(mode="golden_hits", display_name="Golden Hits",
                       free_spins=12, entry_sticky_frames=3, sticky_on_retrigger=1),
        BonusTierRules(mode="velvet_nights", display_name="Velvet Nights",
                       free_spins=14, entry_sticky_frames=ROWS * COLS,
                       frame_probability=1.0,
                       symbols=SymbolDistribution(scatter_probability=0.0,
                                                  wild_probability=0.03)),
    ]


def default_game_config() -> GameConfig:
    return GameConfig()
