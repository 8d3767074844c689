"""Bounded-step convergence toward a target distribution and the L1 change gate."""

from __future__ import annotations

from typing import Dict

from shaper.distribution import normalize_to_100
from shaper.state import Distribute

DEFAULT_STEP = 5
DEFAULT_EPSILON = 1
DEFAULT_CHANGE_THRESHOLD = 10


def _union(*keys) -> list:
    seen: Dict[str, None] = {}
    for group in keys:
        for key in group:
            seen.setdefault(key, None)
    return list(seen)


def step_edge(current: float, target: float, step: float, epsilon: float) -> float:
    diff = target - current
    if abs(diff) <= epsilon:
        return current
    direction = 1 if diff > 0 else -1
    return current + direction * min(abs(diff), step)


def step_toward_target(
    current: Distribute,
    target: Distribute,
    step: float = DEFAULT_STEP,
    epsilon: float = DEFAULT_EPSILON,
) -> Distribute:
    """Move every edge of ``current`` at most ``step`` points toward ``target``.

    Differences within ``epsilon`` are ignored. Edges that reach zero are
    dropped and each source is renormalized to sum to 100.
    """
    out: Distribute = {}
    for source in sorted(_union(current, target)):
        cur = current.get(source, {})
        tgt = target.get(source, {})
        moved = {}
        for key in _union(cur, tgt):
            value = step_edge(cur.get(key, 0), tgt.get(key, 0), step, epsilon)
            if value > 0:
                moved[key] = value
        out[source] = normalize_to_100(moved)
    return out


def l1_distance(a: Distribute, b: Distribute) -> float:
    total = 0.0
    for source in _union(a, b):
        am = a.get(source, {})
        bm = b.get(source, {})
        for key in _union(am, bm):
            total += abs(am.get(key, 0) - bm.get(key, 0))
    return total
