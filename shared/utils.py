"""
utils.py – small generic helpers reused in multiple services
"""

from __future__ import annotations
import numpy as np


def pct_change(previous: float, current: float) -> float:
    """Signed percent change; 0.0 when there is no meaningful baseline."""
    if not previous:
        return 0.0
    return (current - previous) / abs(previous) * 100.0


def bucket(value: float, step: float) -> int:
    """Index of the `step`-wide band containing `value` (sign preserved)."""
    if step <= 0:
        return int(np.round(value))
    return int(np.floor(value / step))
