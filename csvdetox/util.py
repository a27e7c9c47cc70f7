from __future__ import annotations

import difflib
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from csvdetox.errors import DetoxUserError


def _is_null(v: Any) -> bool:
    """Null-like cell: None or the empty string."""
    return v is None or (isinstance(v, str) and v == "")


def _is_blank(v: Any, *, whitespace_as_empty: bool = False) -> bool:
    if _is_null(v):
        return True
    if whitespace_as_empty and isinstance(v, str):
        return v.strip() == ""
    return False


def _suggest(col: str, columns: Sequence[str]) -> str:
    matches = difflib.get_close_matches(col, list(columns), n=3, cutoff=0.6)
    if matches:
        return f"Did you mean {matches[0]!r}?"
    return "Available columns: " + ", ".join(columns)


def _require_columns(op: str, wanted: Iterable[str], columns: Sequence[str], *, what: str = "column") -> None:
    """Raise E_<OP>_MISSING_COL when any wanted column is absent from the table."""
    present = set(columns)
    missing = [c for c in wanted if c not in present]
    if not missing:
        return
    label = what if len(missing) == 1 else what + "s"
    raise DetoxUserError(
        f"E_{op.upper()}_MISSING_COL",
        f"{op} refers to {label} not present in the current table: {missing}.",
        hint=_suggest(missing[0], columns),
    )


def _dedupe_names(names: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Disambiguate repeated names with numeric suffixes.

    Returns (unique_names, duplicated_originals). The first occurrence keeps its name;
    later ones become name_1, name_2, ... skipping suffixes already taken.
    """
    taken = set(names)
    seen: set = set()
    counters: dict = {}
    out: List[str] = []
    dups: List[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            out.append(name)
            continue
        if name not in dups:
            dups.append(name)
        n = counters.get(name, 0)
        while True:
            n += 1
            candidate = f"{name}_{n}"
            if candidate not in taken and candidate not in seen:
                break
        counters[name] = n
        seen.add(candidate)
        out.append(candidate)
    return out, dups


def _param_str(op: str, params: dict, key: str, *, required: bool = True, example: str = "") -> Optional[str]:
    v = params.get(key)
    if v is None and not required:
        return None
    if not isinstance(v, str) or not v.strip():
        raise DetoxUserError(
            f"E_{op.upper()}_PARAMS",
            f"{op} requires params.{key} as a non-empty string.",
            hint=example or None,
        )
    return v


def _param_str_list(op: str, params: dict, key: str, *, required: bool = True, example: str = "") -> List[str]:
    v = params.get(key)
    if v is None and not required:
        return []
    if not isinstance(v, (list, tuple)) or (required and not v) or not all(isinstance(c, str) and c for c in v):
        raise DetoxUserError(
            f"E_{op.upper()}_PARAMS",
            f"{op} requires params.{key} as a non-empty list of column names.",
            hint=example or None,
        )
    return list(v)


def _param_bool(op: str, params: dict, key: str, default: bool) -> bool:
    v = params.get(key, default)
    if v is None:
        return default
    if not isinstance(v, bool):
        raise DetoxUserError(
            f"E_{op.upper()}_PARAMS",
            f"{op} params.{key} must be a boolean.",
        )
    return v


def _param_choice(op: str, params: dict, key: str, choices: Sequence[str], default: Optional[str] = None) -> str:
    v = params.get(key, default)
    if v not in choices:
        raise DetoxUserError(
            f"E_{op.upper()}_PARAMS",
            f"{op} params.{key} must be one of: " + ", ".join(repr(c) for c in choices) + ".",
            hint=f"Got {v!r}.",
        )
    return v
