"""
Deterministic seed derivation.

Python's built-in ``hash()`` is salted per process, so every seeded stream in
the engine is derived from a SHA-256 digest of the request seed plus a tag.
The same ``(seed, *parts)`` therefore yields the same stream on any machine.
"""

from __future__ import annotations

import hashlib
import random


def derive_seed(seed: int, *parts: object) -> int:
    """Derive a 63-bit integer seed from a base seed and any tag parts."""
    material = ":".join([str(seed), *(str(p) for p in parts)])
    digest = hashlib.sha256(material.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") >> 1


def seeded_rng(seed: int, *parts: object) -> random.Random:
    """Return an independent ``random.Random`` for ``(seed, *parts)``."""
    return random.Random(derive_seed(seed, *parts))


def stable_id(prefix: str, seed: int, lat: float, lng: float) -> str:
    """Stable short identifier for a point under a seed.

    Coordinates are rounded to 6 decimals (≈ 0.1 m) before hashing.
    """
    material = f"{seed}:{lat:.6f}:{lng:.6f}"
    return f"{prefix}-{hashlib.sha1(material.encode('utf-8')).hexdigest()[:12]}"
