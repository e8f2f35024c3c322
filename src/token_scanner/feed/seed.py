"""Seeded 32-bit pseudorandom streams and seed mixing."""

import json
import os
import re
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence, TypeVar

DEFAULT_SEED = 0xC0FFEE
UINT32_MASK = 0xFFFFFFFF

T = TypeVar("T")


def to_uint32(value: Any) -> int | None:
    """Coerce a number (or numeric string) to an unsigned 32-bit int, or None."""
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return number & UINT32_MASK


def mix_seeds(a: int, b: int) -> int:
    """
    Combine two seeds into a new uint32 seed.

    XOR followed by a 32-bit integer avalanche so that neighbouring salts
    (tick 1, tick 2, ...) land on unrelated sub-streams.
    """
    y = (a ^ b) & UINT32_MASK
    y = (y + 0x7ED55D16 + (y << 12)) & UINT32_MASK
    y = (y ^ 0xC761C23C ^ (y >> 19)) & UINT32_MASK
    y = (y + 0x165667B1 + (y << 5)) & UINT32_MASK
    y = (y ^ 0xD3A2646C ^ (y << 9)) & UINT32_MASK
    y = (y + 0xFD7046C5 + (y << 3)) & UINT32_MASK
    y = (y ^ 0xB55A4F09 ^ (y >> 16)) & UINT32_MASK
    return y


def mulberry32(seed: int) -> Callable[[], float]:
    """Return a generator function producing floats in [0, 1) for ``seed``."""
    state = seed & UINT32_MASK

    def next_float() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & UINT32_MASK
        t = state
        r = ((t ^ (t >> 15)) * (t | 1)) & UINT32_MASK
        r ^= (r + ((r ^ (r >> 7)) * (r | 61))) & UINT32_MASK
        return ((r ^ (r >> 14)) & UINT32_MASK) / 4294967296

    return next_float


def hash32(text: str) -> int:
    """FNV-1a over the UTF-8 bytes of ``text``."""
    h = 2166136261
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * 16777619) & UINT32_MASK
    return h


def hash_params(params: Mapping[str, Any]) -> int:
    """Stable hash of a parameter mapping; keys are sorted and None values ignored."""
    canonical = {k: v for k, v in params.items() if v is not None}
    return hash32(json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str))


def pick(options: Sequence[T], rnd: Callable[[], float]) -> T:
    return options[int(rnd() * len(options))]


def shuffled(items: Sequence[T], rnd: Callable[[], float]) -> list[T]:
    """Fisher-Yates shuffle driven by ``rnd``; the input is left untouched."""
    out = list(items)
    for i in range(len(out) - 1, 0, -1):
        j = int(rnd() * (i + 1))
        out[i], out[j] = out[j], out[i]
    return out


def resolve_base_seed(
    explicit: int | None = None,
    env: Mapping[str, str] | None = None,
    seed_file: str | Path | None = ".seed",
) -> int:
    """
    Resolve the process-wide base seed.

    Priority:
    1. explicit value (from config)
    2. SCANNER_SEED or SEED environment variable
    3. first integer in the seed file
    4. DEFAULT_SEED
    """
    if explicit is not None:
        parsed = to_uint32(explicit)
        if parsed is not None:
            return parsed

    env = os.environ if env is None else env
    for name in ("SCANNER_SEED", "SEED"):
        parsed = to_uint32(env.get(name))
        if parsed is not None:
            return parsed

    if seed_file:
        path = Path(seed_file)
        if path.is_file():
            match = re.search(r"-?\d+", path.read_text(encoding="utf-8"))
            if match:
                return int(match.group(0)) & UINT32_MASK

    return DEFAULT_SEED
