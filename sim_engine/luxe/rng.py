"""
LUXE — Provably Fair RNG Source

Server-seed + client-seed + nonce system for verifiable spin outcomes.

Architecture:
    Server generates server_seed_hash = SHA-256(server_seed) and shares it.
    Each spin (nonce n) consumes a stream of 32-bit draws:
        block 0 = HMAC-SHA256(server_seed, client_seed + ":" + n)
        block k = HMAC-SHA256(server_seed, client_seed + ":" + n + ":" + k)
    Every 64-hex-char block yields eight floats in [0, 1).
    Block 0 is the round's combined_hash recorded in the audit log.
    After the session closes, server_seed is revealed for verification.

The authoritative server and a predictive client renderer that share the
seeds and nonce draw exactly the same sequence, so they build the same grid.

Usage:
    from sim_engine.luxe.rng import ProvablyFairRNG

    rng = ProvablyFairRNG()
    seeds = rng.new_seeds()
    stream = rng.stream(seeds.server_seed, seeds.client_seed, nonce=0)
    stream.random()
"""

from __future__ import annotations

import hashlib
import hmac
import os
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence, TypeVar

from sim_engine.luxe.errors import InternalRNGFailure

T = TypeVar("T")

_FLOATS_PER_BLOCK = 8


class RandomSource(ABC):
    """Uniform randomness consumed sequentially within one spin."""

    draws: int = 0

    @abstractmethod
    def random(self) -> float:
        """Float in [0, 1)."""
        ...

    def chance(self, probability: float) -> bool:
        return self.random() < probability

    def randbelow(self, n: int) -> int:
        """Int in [0, n)."""
        if n <= 0:
            raise ValueError("randbelow() requires n > 0")
        return min(int(self.random() * n), n - 1)

    def choice(self, seq: Sequence[T]) -> T:
        return seq[self.randbelow(len(seq))]

    def weighted_choice(self, items: Sequence[T], weights: Sequence[float]) -> T:
        total = float(sum(weights))
        if total <= 0:
            raise ValueError("weights must sum to > 0")
        roll = self.random() * total
        acc = 0.0
        for item, weight in zip(items, weights):
            acc += weight
            if roll < acc:
                return item
        return items[-1]


class HmacRandomStream(RandomSource):
    """Deterministic HMAC-SHA256 draw stream for one nonce."""

    def __init__(self, server_seed: str, client_seed: str, nonce: int):
        self.server_seed = server_seed
        self.client_seed = client_seed
        self.nonce = nonce
        self.draws = 0
        self._block = 0
        self._digest = self._derive(0)
        self._offset = 0
        self.combined_hash = self._digest

    def _derive(self, block: int) -> str:
        message = f"{self.client_seed}:{self.nonce}"
        if block:
            message += f":{block}"
        try:
            return hmac.new(
                self.server_seed.encode(), message.encode(), hashlib.sha256,
            ).hexdigest()
        except (TypeError, ValueError) as e:
            raise InternalRNGFailure(f"HMAC derivation failed: {e}") from e

    def random(self) -> float:
        if self._offset >= _FLOATS_PER_BLOCK:
            self._block += 1
            self._digest = self._derive(self._block)
            self._offset = 0
        segment = self._digest[self._offset * 8:self._offset * 8 + 8]
        self._offset += 1
        self.draws += 1
        return int(segment, 16) / 0x100000000  # 2^32


class SeededRandomSource(RandomSource):
    """random.Random-backed source for tests and Monte Carlo runs."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)
        self.draws = 0

    def random(self) -> float:
        self.draws += 1
        return self._rng.random()


@dataclass(frozen=True)
class SeedPair:
    server_seed: str
    server_seed_hash: str
    client_seed: str


class ProvablyFairRNG:
    """Seed management and verification. Holds no per-session state."""

    def new_seeds(self, client_seed: Optional[str] = None) -> SeedPair:
        """Fresh server seed with its hash commitment."""
        try:
            server_seed = os.urandom(32).hex()
            if not client_seed:
                client_seed = os.urandom(16).hex()
        except (OSError, NotImplementedError) as e:
            raise InternalRNGFailure(f"Entropy source unavailable: {e}") from e
        return SeedPair(
            server_seed=server_seed,
            server_seed_hash=hashlib.sha256(server_seed.encode()).hexdigest(),
            client_seed=client_seed,
        )

    def stream(self, server_seed: str, client_seed: str, nonce: int) -> HmacRandomStream:
        return HmacRandomStream(server_seed, client_seed, nonce)

    # ── Verification ──────────────────────────────────────────

    @staticmethod
    def round_hash(server_seed: str, client_seed: str, nonce: int) -> str:
        return hmac.new(
            server_seed.encode(),
            f"{client_seed}:{nonce}".encode(),
            hashlib.sha256,
        ).hexdigest()

    @classmethod
    def verify_round(cls, server_seed: str, client_seed: str,
                     nonce: int, expected_hash: str) -> bool:
        """Verify a round's hash matches the seeds + nonce."""
        return hmac.compare_digest(
            cls.round_hash(server_seed, client_seed, nonce), expected_hash)

    @staticmethod
    def verify_server_seed(server_seed: str, expected_hash: str) -> bool:
        """Verify the server seed matches the hash shared before play."""
        computed = hashlib.sha256(server_seed.encode()).hexdigest()
        return hmac.compare_digest(computed, expected_hash)
