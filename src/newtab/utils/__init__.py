"""Utility helpers for the dashboard backend."""

from .datetime_utils import (
    iso_millis,
    local_now,
    to_epoch_ms,
    today_bounds,
)

__all__ = [
    "iso_millis",
    "local_now",
    "to_epoch_ms",
    "today_bounds",
]
