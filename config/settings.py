"""
LUXE — Operator Settings

Environment-driven limits layered onto the game tables at startup.
Values are read once from the process environment (and a local .env file);
the resulting GameConfig is frozen and injected into the engine.

    LUXE_DB_PATH            sqlite file for sessions / bonus state   (luxe.db)
    LUXE_MIN_BET            smallest accepted bet                     (0.10)
    LUXE_MAX_BET            largest accepted bet                      (100)
    LUXE_MAX_FREE_SPINS     cap on remaining free spins, empty = none
    LUXE_MAX_FRAME_VALUE    ceiling for doubling sticky multipliers  (1000)
    LUXE_MAX_WIN_MULTIPLIER per-spin win cap in bets, empty = none   (20000)
    LUXE_LOG_LEVEL          level for the "luxe" logger tree          (INFO)
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from config.slot_schema import GameConfig, default_game_config
from sim_engine.luxe.errors import InvalidConfiguration

load_dotenv()


def _optional_number(raw: Optional[str], cast):
    if raw is None or raw.strip() == "":
        return None
    return cast(raw)


class SlotSettings:

    DB_PATH = os.getenv("LUXE_DB_PATH", "luxe.db")
    MIN_BET = float(os.getenv("LUXE_MIN_BET", "0.10"))
    MAX_BET = float(os.getenv("LUXE_MAX_BET", "100"))
    MAX_FREE_SPINS = _optional_number(os.getenv("LUXE_MAX_FREE_SPINS"), int)
    MAX_FRAME_VALUE = int(os.getenv("LUXE_MAX_FRAME_VALUE", "1000"))
    MAX_WIN_MULTIPLIER = _optional_number(os.getenv("LUXE_MAX_WIN_MULTIPLIER", "20000"), float)
    LOG_LEVEL = os.getenv("LUXE_LOG_LEVEL", "INFO")

    @classmethod
    def game_config(cls, base: Optional[GameConfig] = None) -> GameConfig:
        """Apply operator limits onto the game tables and re-validate."""
        base = base or default_game_config()
        data = base.model_dump()
        data.update({
            "min_bet": cls.MIN_BET,
            "max_bet": cls.MAX_BET,
            "max_free_spins": cls.MAX_FREE_SPINS,
            "max_frame_value": cls.MAX_FRAME_VALUE,
            "max_win_multiplier": cls.MAX_WIN_MULTIPLIER,
        })
        try:
            return GameConfig.model_validate(data)
        except ValidationError as e:
            raise InvalidConfiguration(f"Operator settings rejected: {e.error_count()} error(s)",
                                       errors=e.errors(include_url=False)) from e

    @classmethod
    def configure_logging(cls) -> logging.Logger:
        """Attach a stream handler to the "luxe" logger tree (idempotent)."""
        logger = logging.getLogger("luxe")
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(
                "[%(asctime)s] %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"))
            logger.addHandler(handler)
        logger.setLevel(getattr(logging, cls.LOG_LEVEL.upper(), logging.INFO))
        return logger
