"""Typed records for rows read from the database and payloads sent by clients."""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .ranking import ResultStatus, normalize_status
from .relays import relay_total

LEG_COUNT = 4

M = TypeVar("M", bound=BaseModel)


class RecordError(ValueError):
    """A row or payload failed validation."""

    def __init__(self, model: str, errors: List[str]):
        self.model = model
        self.errors = errors
        super().__init__(f"invalid {model}: " + "; ".join(errors))


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class _StatusRecord(_Record):
    status: ResultStatus = Field(default=ResultStatus.FINISHED, alias="result_status")

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> ResultStatus:
        return normalize_status(v)


class Result(_StatusRecord):
    """An individual swim. ``time_ms`` is always 0 for non-finishers."""

    res_id: int
    fincode: int
    meet_id: Optional[int] = None
    event_numb: Optional[int] = None
    time_ms: int = Field(default=0, alias="res_time_decimal", ge=0)
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    race_id: Optional[int] = None
    course: Optional[int] = None
    meet_name: Optional[str] = None
    meet_date: Optional[date] = None

    @field_validator("time_ms", mode="before")
    @classmethod
    def _null_time(cls, v: Any) -> Any:
        return 0 if v is None else v

    @model_validator(mode="after")
    def _unset_time_for_non_finishers(self) -> "Result":
        if self.status is not ResultStatus.FINISHED:
            self.time_ms = 0
        return self


class Split(_Record):
    splits_id: Optional[int] = None
    splits_res_id: Optional[int] = None
    distance: int = Field(gt=0)
    split_time: int = Field(ge=0)


class Race(_Record):
    race_id: int
    distance: int
    relay_count: int = 1
    stroke_long_en: str = ""

    @property
    def is_relay(self) -> bool:
        return self.relay_count > 1


class RelayLeg(BaseModel):
    fincode: int = 0
    entry_time: int = 0
    res_time: int = 0


class RelayResult(_StatusRecord):
    """A relay team's swim, stored as four flattened legs."""

    relay_result_id: Optional[int] = None
    meet_id: Optional[int] = None
    event_numb: Optional[int] = None
    relay_name: str = ""
    legs: List[RelayLeg]

    @model_validator(mode="before")
    @classmethod
    def _gather_legs(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "legs" in data:
            return data
        data = dict(data)
        data["legs"] = [
            {
                "fincode": data.get(f"leg{n}_fincode") or 0,
                "entry_time": data.get(f"leg{n}_entry_time") or 0,
                "res_time": data.get(f"leg{n}_res_time") or 0,
            }
            for n in range(1, LEG_COUNT + 1)
        ]
        return data

    @field_validator("legs")
    @classmethod
    def _four_legs(cls, v: List[RelayLeg]) -> List[RelayLeg]:
        if len(v) != LEG_COUNT:
            raise ValueError(f"a relay has exactly {LEG_COUNT} legs, got {len(v)}")
        return v

    @model_validator(mode="after")
    def _unset_legs_for_non_finishers(self) -> "RelayResult":
        if self.status is not ResultStatus.FINISHED:
            for leg in self.legs:
                leg.res_time = 0
        return self

    @property
    def time_ms(self) -> int:
        return relay_total(self.legs)

    def to_row(self) -> dict:
        row = {
            "meet_id": self.meet_id,
            "event_numb": self.event_numb,
            "relay_name": self.relay_name,
            "result_status": self.status.value,
        }
        for n, leg in enumerate(self.legs, start=1):
            row[f"leg{n}_fincode"] = leg.fincode
            row[f"leg{n}_entry_time"] = leg.entry_time
            row[f"leg{n}_res_time"] = leg.res_time
        return row


# Request payloads


class ResultTimeUpdate(_Record):
    time: str = ""
    status: ResultStatus = ResultStatus.FINISHED

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> ResultStatus:
        return normalize_status(v)


class SplitInput(_Record):
    distance: int = Field(gt=0)
    time: str = ""


class SplitsUpdate(_Record):
    splits: List[SplitInput] = []


class RelayTimesUpdate(_Record):
    legs: List[str] = []
    status: ResultStatus = ResultStatus.FINISHED

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> ResultStatus:
        return normalize_status(v)

    @model_validator(mode="after")
    def _finished_needs_legs(self) -> "RelayTimesUpdate":
        if self.status is ResultStatus.FINISHED and len(self.legs) != LEG_COUNT:
            raise ValueError(f"expected {LEG_COUNT} leg times, got {len(self.legs)}")
        return self


class RelayCreate(_Record):
    relay_name: str
    fincodes: List[int]
    splits: List[str] = []
    legs: List[str] = []
    entry_times: List[str] = []

    @field_validator("relay_name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("relay name is required")
        return v

    @field_validator("fincodes")
    @classmethod
    def _athletes(cls, v: List[int]) -> List[int]:
        if len(v) != LEG_COUNT or any(f <= 0 for f in v):
            raise ValueError(f"select all {LEG_COUNT} athletes for the relay")
        if len(set(v)) != LEG_COUNT:
            raise ValueError("each athlete can only appear once in the relay")
        return v

    @model_validator(mode="after")
    def _one_time_source(self) -> "RelayCreate":
        if self.splits and self.legs:
            raise ValueError("send either cumulative splits or leg times, not both")
        if len(self.legs) > LEG_COUNT:
            raise ValueError(f"at most {LEG_COUNT} leg times")
        return self


def _messages(exc: ValidationError) -> List[str]:
    out = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid")
        out.append(f"{loc}: {msg}" if loc else msg)
    return out


def parse_record(model: Type[M], data: Any) -> M:
    """Validate ``data`` into ``model`` or raise :class:`RecordError`."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise RecordError(model.__name__, _messages(exc)) from exc


def parse_records(model: Type[M], rows: Iterable[Any]) -> List[M]:
    return [parse_record(model, row) for row in (rows or [])]


__all__ = [
    "RecordError",
    "Result",
    "Split",
    "Race",
    "RelayLeg",
    "RelayResult",
    "ResultTimeUpdate",
    "SplitInput",
    "SplitsUpdate",
    "RelayTimesUpdate",
    "RelayCreate",
    "parse_record",
    "parse_records",
]
