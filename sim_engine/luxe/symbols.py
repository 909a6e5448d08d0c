"""
LUXE — Grid Data Model

Symbols, frames, cells and the 4x5 grid. Everything here is immutable;
a grid is never modified after the generator returns it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union


class Symbol(int, Enum):
    DIAMOND_SUIT = 0
    CLUB_SUIT = 1
    SPADE_SUIT = 2
    HEART_SUIT = 3
    DICE = 4
    CHIPS = 5
    CARDS = 6
    CROWN = 7
    GEM = 8
    WILD = 9
    SCATTER = 10

    @property
    def key(self) -> str:
        return self.name.lower()

    @property
    def is_wild(self) -> bool:
        return self is Symbol.WILD

    @property
    def is_scatter(self) -> bool:
        return self is Symbol.SCATTER


REGULAR_SYMBOLS = tuple(s for s in Symbol if s < Symbol.WILD)


class BonusMode(str, Enum):
    NONE = "none"
    TIER1 = "black_and_gold"
    TIER2 = "golden_hits"
    TIER3 = "velvet_nights"

    @property
    def is_bonus(self) -> bool:
        return self is not BonusMode.NONE

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    BonusMode.NONE: "Base Game",
    BonusMode.TIER1: "Black & Gold",
    BonusMode.TIER2: "Golden Hits",
    BonusMode.TIER3: "Velvet Nights",
}


class FrameType(str, Enum):
    MULTIPLIER = "multiplier"
    JACKPOT = "jackpot"


@dataclass(frozen=True)
class Frame:
    """Overlay on a cell: an int multiplier value or a jackpot tier name."""
    frame_type: FrameType
    value: Union[int, str]

    @property
    def is_multiplier(self) -> bool:
        return self.frame_type is FrameType.MULTIPLIER

    @property
    def is_jackpot(self) -> bool:
        return self.frame_type is FrameType.JACKPOT

    @classmethod
    def multiplier(cls, value: int) -> "Frame":
        return cls(FrameType.MULTIPLIER, int(value))

    @classmethod
    def jackpot(cls, tier: str) -> "Frame":
        return cls(FrameType.JACKPOT, str(tier))


@dataclass(frozen=True)
class StickyFrame:
    """A frame bound to a grid coordinate for the rest of a bonus run."""
    row: int
    col: int
    frame_type: FrameType
    value: Union[int, str]

    @property
    def coord(self) -> tuple[int, int]:
        return (self.row, self.col)

    @property
    def frame(self) -> Frame:
        return Frame(self.frame_type, self.value)

    @classmethod
    def at(cls, row: int, col: int, frame: Frame) -> "StickyFrame":
        return cls(row, col, frame.frame_type, frame.value)

    def to_dict(self) -> dict:
        return {"row": self.row, "col": self.col,
                "type": self.frame_type.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict) -> "StickyFrame":
        frame_type = FrameType(data.get("type") or data.get("frame_type"))
        value = data["value"]
        value = int(value) if frame_type is FrameType.MULTIPLIER else str(value)
        return cls(int(data["row"]), int(data["col"]), frame_type, value)


def normalize_sticky(frames: Iterable[StickyFrame]) -> tuple[StickyFrame, ...]:
    """Sort by coordinate; a later frame at the same coordinate wins."""
    by_coord = {}
    for f in frames:
        by_coord[f.coord] = f
    return tuple(by_coord[c] for c in sorted(by_coord))


@dataclass(frozen=True)
class Cell:
    symbol: Symbol
    frame: Optional[Frame] = None

    def to_dict(self) -> dict:
        data = {
            "symbol_id": int(self.symbol),
            "symbol": self.symbol.key,
            "has_frame": self.frame is not None,
        }
        if self.frame is not None:
            data["frame_type"] = self.frame.frame_type.value
            data["frame_value"] = self.frame.value
        return data


@dataclass(frozen=True)
class Grid:
    cells: tuple[tuple[Cell, ...], ...]

    @property
    def rows(self) -> int:
        return len(self.cells)

    @property
    def cols(self) -> int:
        return len(self.cells[0]) if self.cells else 0

    def cell(self, row: int, col: int) -> Cell:
        return self.cells[row][col]

    def symbol_at(self, row: int, col: int) -> Symbol:
        return self.cells[row][col].symbol

    def frame_at(self, row: int, col: int) -> Optional[Frame]:
        return self.cells[row][col].frame

    def scatter_positions(self) -> tuple[tuple[int, int], ...]:
        return tuple(
            (r, c)
            for r, row in enumerate(self.cells)
            for c, cell in enumerate(row)
            if cell.symbol.is_scatter
        )

    def with_frames(self, frames: dict) -> "Grid":
        """Return a copy with frames stamped at the given {(row, col): Frame}."""
        return Grid(tuple(
            tuple(
                Cell(cell.symbol, frames.get((r, c), cell.frame))
                for c, cell in enumerate(row)
            )
            for r, row in enumerate(self.cells)
        ))

    def to_list(self) -> list[list[dict]]:
        return [[cell.to_dict() for cell in row] for row in self.cells]

    @classmethod
    def from_symbols(cls, rows: list[list], frames: Optional[dict] = None) -> "Grid":
        """Build a grid from symbol rows (Symbol or int ids); handy in tests."""
        frames = frames or {}
        return cls(tuple(
            tuple(Cell(Symbol(s), frames.get((r, c))) for c, s in enumerate(row))
            for r, row in enumerate(rows)
        ))
