"""Symbol vocabulary for generated scanner items."""

from functools import lru_cache
from importlib import resources

import yaml

VOCABULARY_SIZE = 2500


@lru_cache(maxsize=None)
def load_symbols(size: int = VOCABULARY_SIZE) -> tuple[str, ...]:
    """
    Load the base words from ``symbols.yaml`` and expand them to ``size`` symbols.

    Words are cycled and suffixed with a 1-based, zero-padded counter so every
    symbol is unique: AMBER0001, BLAZE0002, ...
    """
    raw = yaml.safe_load(resources.files(__package__).joinpath("symbols.yaml").read_text())
    words = [str(w).strip().upper() for w in (raw or {}).get("words", []) if str(w).strip()]
    if not words:
        raise ValueError("symbols.yaml does not define any words")

    return tuple(f"{words[(i - 1) % len(words)]}{i:04d}" for i in range(1, size + 1))
