"""Relay leg arithmetic, medley leg strokes and split sheets."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .timecodec import format_duration

LEG_COUNT = 4

BACKSTROKE = "Backstroke"
BREASTSTROKE = "Breaststroke"
BUTTERFLY = "Butterfly"
FREESTYLE = "Freestyle"

# Federation order for medley relays (legs 1-4)
MEDLEY_ORDER = (BACKSTROKE, BREASTSTROKE, BUTTERFLY, FREESTYLE)

RaceLookup = Mapping[Tuple[int, str], int]


def _leg_time(leg: Any) -> int:
    if isinstance(leg, int):
        return leg
    return int(getattr(leg, "res_time", 0) or 0)


def relay_total(legs: Iterable[Any]) -> int:
    """Sum of the leg times. Unset legs simply add nothing."""
    return sum(_leg_time(leg) for leg in legs)


def splits_to_leg_times(cumulative: Sequence[int]) -> List[int]:
    """Turn cumulative split times into the four individual leg times.

    Legs without a split are 0. Splits past the fourth are ignored. A split
    smaller than the one before it produces a negative leg.
    """
    legs: List[int] = []
    for k in range(LEG_COUNT):
        if k >= len(cumulative):
            legs.append(0)
        elif k == 0:
            legs.append(cumulative[0])
        else:
            legs.append(cumulative[k] - cumulative[k - 1])
    return legs


def leg_stroke(category: str, leg_number: int) -> str:
    """Stroke swum on ``leg_number`` (1-4) of a relay of ``category``."""
    if leg_number not in range(1, LEG_COUNT + 1):
        raise ValueError(f"Relay leg must be 1-{LEG_COUNT}, got {leg_number}")
    if "medley" in (category or "").lower():
        return MEDLEY_ORDER[leg_number - 1]
    return canonical_stroke(category) or category


def canonical_stroke(name: str) -> Optional[str]:
    """Map free-form stroke names ("Free", "Butterfly", "Fly") to a canonical one."""
    lower = (name or "").lower()
    if "free" in lower:
        return FREESTYLE
    if "back" in lower:
        return BACKSTROKE
    if "breast" in lower:
        return BREASTSTROKE
    if "fly" in lower or "butter" in lower:
        return BUTTERFLY
    return None


def build_race_lookup(races: Iterable[Any]) -> Dict[Tuple[int, str], int]:
    """Index individual races by (distance, canonical stroke)."""
    lookup: Dict[Tuple[int, str], int] = {}
    for race in races:
        if getattr(race, "relay_count", 1) != 1:
            continue
        stroke = canonical_stroke(race.stroke_long_en)
        if stroke is None:
            continue
        lookup.setdefault((int(race.distance), stroke), int(race.race_id))
    return lookup


def race_id_for_leg(category: str, leg_number: int, distance: int, lookup: RaceLookup) -> Optional[int]:
    """Individual race whose personal best seeds the entry time of a leg."""
    stroke = canonical_stroke(leg_stroke(category, leg_number))
    if stroke is None:
        return None
    return lookup.get((int(distance), stroke))


def split_intervals(distance: int) -> List[int]:
    """Checkpoint distances for split entry: every 100 m for 800/1500, else every 50 m."""
    step = 100 if distance in (800, 1500) else 50
    return list(range(step, distance + 1, step))


def split_sheet(distance: int, result_time: int, splits: Iterable[Any]) -> List[Dict]:
    """Rows for the split entry form of one result.

    Stored splits fill their checkpoint. The final distance always shows the
    result's overall time.
    """
    stored = {int(s.distance): s for s in splits}
    distances = sorted(set(split_intervals(distance)) | set(stored))
    rows: List[Dict] = []
    for dist in distances:
        split = stored.get(dist)
        time_ms = split.split_time if split is not None else 0
        if dist == distance:
            time_ms = result_time
        rows.append(
            {
                "distance": dist,
                "splits_id": getattr(split, "splits_id", None),
                "time_ms": time_ms,
                "time": format_duration(time_ms) if time_ms else "",
            }
        )
    return rows


__all__ = [
    "LEG_COUNT",
    "MEDLEY_ORDER",
    "relay_total",
    "splits_to_leg_times",
    "leg_stroke",
    "canonical_stroke",
    "build_race_lookup",
    "race_id_for_leg",
    "split_intervals",
    "split_sheet",
]
