"""Result ordering, ranking and personal best selection.

Finishers always come before non-finishers. Finishers are ordered by time
(lower is better); non-finishers by their status code, which gives
``DNF < DNS < DSQ``. Sorting is stable so equal results keep the order in
which they were entered.
"""

from __future__ import annotations

from enum import Enum
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .timecodec import format_result_time


class ResultStatus(str, Enum):
    FINISHED = "FINISHED"
    DNS = "DNS"
    DNF = "DNF"
    DSQ = "DSQ"

    def __str__(self) -> str:
        return self.value


def normalize_status(value: Any) -> ResultStatus:
    """Coerce a stored or submitted status to :class:`ResultStatus`.

    A missing or empty status means the swim was finished.
    """
    if isinstance(value, ResultStatus):
        return value
    if value is None:
        return ResultStatus.FINISHED
    text = str(value).strip().upper()
    if not text:
        return ResultStatus.FINISHED
    try:
        return ResultStatus(text)
    except ValueError:
        raise ValueError(f"Unknown result status '{value}'") from None


def _status_of(result: Any) -> ResultStatus:
    return normalize_status(getattr(result, "status", None))


def is_finished(result: Any) -> bool:
    return _status_of(result) is ResultStatus.FINISHED


def compare_results(a: Any, b: Any) -> int:
    """Three-way comparison of two results from the same event.

    Returns a negative number when ``a`` ranks before ``b``, positive when
    after and 0 when they are equal. Both arguments need ``status`` and
    ``time_ms`` attributes.
    """
    a_done, b_done = is_finished(a), is_finished(b)
    if a_done and not b_done:
        return -1
    if b_done and not a_done:
        return 1
    if a_done:
        return (a.time_ms > b.time_ms) - (a.time_ms < b.time_ms)
    sa, sb = _status_of(a).value, _status_of(b).value
    return (sa > sb) - (sa < sb)


result_sort_key = cmp_to_key(compare_results)


def sort_results(results: Iterable[Any]) -> List[Any]:
    """Return results in finishing order; ties keep their input order."""
    return sorted(results, key=result_sort_key)


def rank_results(results: Iterable[Any]) -> List[Dict]:
    """Sort results and attach finishing positions.

    Finishers on equal times share a position and the next finisher skips
    ahead (1, 2, 2, 4). Non-finishers get no position.
    """
    ranked: List[Dict] = []
    last_time: Optional[int] = None
    position = 0
    for idx, result in enumerate(sort_results(results), start=1):
        finished = is_finished(result)
        if finished:
            if last_time is None or result.time_ms > last_time:
                position = idx
                last_time = result.time_ms
        ranked.append(
            {
                "result": result,
                "position": position if finished else None,
                "status": _status_of(result).value,
                "time_ms": result.time_ms,
                "display": format_result_time(result.time_ms, _status_of(result).value),
            }
        )
    return ranked


def personal_bests(results: Iterable[Any]) -> Dict[Tuple[int, Optional[int], Optional[int]], Any]:
    """Fastest finished swim per (fincode, race_id, course).

    Unset (zero) times never count. On equal times the earlier result wins.
    """
    best: Dict[Tuple[int, Optional[int], Optional[int]], Any] = {}
    for result in results:
        if not is_finished(result) or not result.time_ms:
            continue
        key = (result.fincode, result.race_id, result.course)
        current = best.get(key)
        if current is None or result.time_ms < current.time_ms:
            best[key] = result
    return best


def progression(results: Iterable[Any]) -> List[Dict]:
    """Time-ordered history of finished swims with improvement figures.

    ``improvement_ms`` is the previous swim's time minus this one (positive
    means faster); ``best_ms`` is the best time so far.
    """
    swims = [r for r in results if is_finished(r) and r.time_ms]
    swims.sort(key=lambda r: (r.meet_date is None, r.meet_date or 0))
    rows: List[Dict] = []
    best_ms: Optional[int] = None
    previous: Optional[int] = None
    for result in swims:
        if best_ms is None or result.time_ms < best_ms:
            best_ms = result.time_ms
        rows.append(
            {
                "result": result,
                "time_ms": result.time_ms,
                "improvement_ms": 0 if previous is None else previous - result.time_ms,
                "best_ms": best_ms,
            }
        )
        previous = result.time_ms
    return rows


__all__ = [
    "ResultStatus",
    "normalize_status",
    "is_finished",
    "compare_results",
    "result_sort_key",
    "sort_results",
    "rank_results",
    "personal_bests",
    "progression",
]
