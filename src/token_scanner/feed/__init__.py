"""Deterministic scanner feed: snapshot generator, pair streams and server."""

from .generator import ScannerGenerator, ScannerPage, normalize_params
from .scheduler import PairStreamScheduler, StreamTiming, build_stats, build_tick
from .seed import hash32, mix_seeds, mulberry32, resolve_base_seed
from .server import FeedServer, FeedSession

__all__ = [
    "FeedServer",
    "FeedSession",
    "PairStreamScheduler",
    "ScannerGenerator",
    "ScannerPage",
    "StreamTiming",
    "build_stats",
    "build_tick",
    "hash32",
    "mix_seeds",
    "mulberry32",
    "normalize_params",
    "resolve_base_seed",
]
