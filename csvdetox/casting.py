"""Value casting and cast validation previews.

Casts reuse the classifier's recognizers so that a column inferred as a type can always be cast to it.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Sequence

from csvdetox.errors import DetoxUserError
from csvdetox.inference import is_boolean, is_date, is_number, parse_date

CAST_TYPES = ("string", "number", "boolean", "date")

# Recommended recovery mode thresholds (failure rate in percent, inclusive upper bounds).
SKIP_MAX_FAILURE_RATE = 5.0
NULL_MAX_FAILURE_RATE = 20.0

_TRUE = {"true", "yes", "y", "1"}
_FALSE = {"false", "no", "n", "0"}


class CastFailure(ValueError):
    """A single value could not be converted to the target type."""


def cast_to_string(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (datetime, date, time)):
        return v.isoformat()
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def cast_to_number(v: Any) -> float:
    if isinstance(v, bool):
        raise CastFailure(f"Cannot convert {v!r} to number")
    if isinstance(v, (int, float)):
        if isinstance(v, float) and not math.isfinite(v):
            raise CastFailure(f"Cannot convert {v!r} to number")
        return v
    s = str(v).strip()
    if not is_number(s):
        raise CastFailure(f"Cannot convert {v!r} to number")
    n = float(s.replace(",", ""))
    if not math.isfinite(n):
        raise CastFailure(f"Cannot convert {v!r} to number")
    if n.is_integer() and "." not in s and "e" not in s.lower():
        return int(n)
    return n


def cast_to_boolean(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        if v == 1:
            return True
        if v == 0:
            return False
        raise CastFailure(f"Cannot convert {v!r} to boolean")
    if is_boolean(v):
        return v.strip().lower() in _TRUE
    raise CastFailure(f"Cannot convert {v!r} to boolean")


def cast_to_date(v: Any, fmt: Optional[str] = None) -> datetime:
    if isinstance(v, datetime):
        return v
    if isinstance(v, date):
        return datetime(v.year, v.month, v.day)
    s = str(v).strip()
    if s == "":
        raise CastFailure(f"Cannot convert {v!r} to date")
    if fmt:
        try:
            return datetime.strptime(s, fmt)
        except ValueError as e:
            raise CastFailure(f"Cannot convert {v!r} to date with format {fmt!r}") from e
    if not is_date(s):
        raise CastFailure(f"Cannot convert {v!r} to date")
    try:
        return parse_date(s)
    except ValueError as e:
        raise CastFailure(f"Cannot convert {v!r} to date") from e


def try_cast(value: Any, target_type: str, fmt: Optional[str] = None) -> Any:
    """Convert one value or raise CastFailure.

    Null input always succeeds: it stays null, except for strings where it becomes "".
    """
    if target_type not in CAST_TYPES:
        raise DetoxUserError(
            "E_CAST_TYPE_UNSUPPORTED",
            f"Unsupported cast type: {target_type!r}.",
            hint="Supported types: " + ", ".join(CAST_TYPES) + ".",
        )
    if value is None or value == "":
        return "" if target_type == "string" else None
    if target_type == "string":
        return cast_to_string(value)
    if target_type == "number":
        return cast_to_number(value)
    if target_type == "boolean":
        return cast_to_boolean(value)
    return cast_to_date(value, fmt)


def recommend_mode(invalid: int, failure_rate: float) -> str:
    """Suggest a recovery mode from a failure rate (percent).

    Clean casts and casts dominated by failures both recommend "fail"; in between, a handful of
    failures suggests dropping the rows ("skip") and a moderate share suggests nulling them.
    """
    if invalid == 0:
        return "fail"
    if failure_rate <= SKIP_MAX_FAILURE_RATE:
        return "skip"
    if failure_rate <= NULL_MAX_FAILURE_RATE:
        return "null"
    return "fail"


@dataclass
class CastValidation:
    total: int
    valid: int
    invalid: int
    failure_rate: float
    recommended_mode: str
    invalid_samples: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "failureRate": self.failure_rate,
            "recommendedMode": self.recommended_mode,
            "invalidSamples": [dict(s) for s in self.invalid_samples],
        }


def validate_cast(
    values: Sequence[Any],
    target_type: str,
    fmt: Optional[str] = None,
    *,
    max_samples: int = 5,
    max_rows: int = 1000,
) -> CastValidation:
    """Preview a cast over the first `max_rows` values without changing anything."""
    sample = list(values[:max_rows])
    valid = 0
    invalid = 0
    samples: List[Dict[str, Any]] = []
    for v in sample:
        try:
            try_cast(v, target_type, fmt)
        except CastFailure as e:
            invalid += 1
            if len(samples) < max_samples:
                samples.append({"value": v, "error": str(e)})
        else:
            valid += 1

    total = len(sample)
    rate = (invalid / total * 100.0) if total else 0.0
    return CastValidation(
        total=total,
        valid=valid,
        invalid=invalid,
        failure_rate=rate,
        recommended_mode=recommend_mode(invalid, rate),
        invalid_samples=samples,
    )
