from __future__ import annotations

from typing import Any, Dict, List

from csvdetox.errors import DetoxUserError


def _normalize_ir(ir: Any) -> Dict[str, Any]:
    """Normalize a persisted step list.

    Guarantees:
      - returns a dict with keys: csvdetox, steps
      - a bare list of steps is accepted and wrapped
      - every step is a mapping with 'type' and a 'config' mapping (missing config becomes {})
      - legacy {op, params} steps are rewritten to {type, config}

    This does not change semantics; it makes the IR deterministic.
    """
    if isinstance(ir, list):
        ir = {"steps": ir}
    if not isinstance(ir, dict):
        raise DetoxUserError(
            "E_IR_ROOT",
            "IR must be a mapping (or a list of steps) at the root.",
            hint="Expected keys: csvdetox, steps.",
        )

    ir2: Dict[str, Any] = dict(ir)
    if ir2.get("csvdetox") is None:
        ir2["csvdetox"] = 0

    version = ir2.get("csvdetox")
    if version != 0:
        raise DetoxUserError(
            "E_IR_VERSION",
            f"Unsupported IR version: {version!r}.",
            hint="Supported: csvdetox: 0",
        )

    steps = ir2.get("steps")
    if steps is None:
        steps = []
    if not isinstance(steps, list):
        raise DetoxUserError(
            "E_IR_STEPS",
            "IR steps must be a list.",
            hint="Example: steps: [{id: s1, type: trim, config: {columns: [name]}}]",
        )

    steps2: List[Dict[str, Any]] = []
    for i, step in enumerate(steps):
        if not isinstance(step, dict):
            raise DetoxUserError(
                "E_IR_STEP",
                f"IR step #{i} must be a mapping.",
                hint=str(step),
            )
        s2: Dict[str, Any] = {}
        if step.get("id") is not None:
            s2["id"] = str(step["id"])
        s2["type"] = step.get("type", step.get("op"))
        s2["config"] = dict(step.get("config", step.get("params")) or {})
        unknown = set(step) - {"id", "type", "op", "config", "params"}
        if unknown:
            raise DetoxUserError(
                "E_IR_STEP",
                f"IR step #{i} has unknown keys: {sorted(unknown)}.",
                hint="Allowed keys: id, type, config.",
            )
        steps2.append(s2)

    ir2["steps"] = steps2
    return ir2
