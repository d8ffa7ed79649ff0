"""Arrival time resolution for ambiguous stop-time updates."""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .models import (
    STATUS_APPROACHING,
    STATUS_SCHEDULED,
    RawEvent,
    ResolvedArrival,
)
from .station_index import direction_from_stop_id

logger = logging.getLogger(__name__)

# 2005-01-01T00:00:00Z. Real delays never get this large, so anything above
# it in a delay slot is an absolute arrival time.
EPOCH_GUESS_THRESHOLD = 1104537600

ROUNDING_FLOOR = "floor"
ROUNDING_ROUND = "round"

UNKNOWN_ROUTE = "?"


@dataclass(frozen=True)
class TimePolicy:
    """Switches for the time heuristics, held constant for a whole response."""
    delay_as_epoch: bool = True
    epoch_threshold: int = EPOCH_GUESS_THRESHOLD
    rounding: str = ROUNDING_FLOOR

    def __post_init__(self):
        if self.rounding not in (ROUNDING_FLOOR, ROUNDING_ROUND):
            raise ValueError(f"Unsupported rounding: {self.rounding}")


DEFAULT_POLICY = TimePolicy()


def looks_like_epoch(value: Optional[int], threshold: int = EPOCH_GUESS_THRESHOLD) -> bool:
    return value is not None and value > threshold


def minutes_until(arrival_epoch: int, now: int, rounding: str = ROUNDING_FLOOR) -> int:
    """
    Whole minutes until arrival, never negative.

    Floor is the default so a train 89 seconds out reads "1 minute".
    "round" rounds half up.
    """
    seconds = arrival_epoch - now
    if rounding == ROUNDING_ROUND:
        minutes = math.floor(seconds / 60 + 0.5)
    else:
        minutes = seconds // 60
    return max(0, int(minutes))


def pick_epoch(event: RawEvent, policy: TimePolicy = DEFAULT_POLICY) -> Tuple[Optional[int], bool]:
    """
    Choose the arrival epoch for an event.

    Returns:
        (epoch or None, whether the delay-as-epoch fallback was used)
    """
    if event.arrival_time is not None and event.arrival_time != 0:
        return int(event.arrival_time), False
    if event.departure_time is not None and event.departure_time != 0:
        return int(event.departure_time), False

    if policy.delay_as_epoch:
        for delay in (event.arrival_delay, event.departure_delay):
            if looks_like_epoch(delay, policy.epoch_threshold):
                return int(delay), True

    return None, False


def _leftover_delay(event: RawEvent, used_fallback: bool, threshold: int) -> Optional[int]:
    """First delay that is a real offset. After the fallback, epoch-like delays are timestamps."""
    for delay in (event.arrival_delay, event.departure_delay):
        if delay is None:
            continue
        if used_fallback and looks_like_epoch(delay, threshold):
            continue
        return int(delay)
    return None


def resolve_arrival(event: RawEvent, now: int, policy: TimePolicy = DEFAULT_POLICY) -> ResolvedArrival:
    """Turn a RawEvent into a ResolvedArrival. Never raises on missing fields."""
    stop_id = event.stop_id or ""
    route = event.route_id or UNKNOWN_ROUTE
    epoch, used_fallback = pick_epoch(event, policy)
    delay_seconds = _leftover_delay(event, used_fallback, policy.epoch_threshold)

    if used_fallback:
        logger.debug(f"Using delay field as arrival time for {stop_id} route {route}: {epoch}")

    if epoch is None:
        return ResolvedArrival(
            stop_id=stop_id,
            route=route,
            direction=direction_from_stop_id(stop_id),
            arrival_epoch=None,
            minutes_until=None,
            status=STATUS_APPROACHING,
            used_fallback_time=False,
            delay_seconds=delay_seconds,
        )

    return ResolvedArrival(
        stop_id=stop_id,
        route=route,
        direction=direction_from_stop_id(stop_id),
        arrival_epoch=epoch,
        minutes_until=minutes_until(epoch, now, policy.rounding),
        status=STATUS_SCHEDULED,
        used_fallback_time=used_fallback,
        delay_seconds=delay_seconds,
    )
