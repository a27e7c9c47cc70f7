from __future__ import annotations

from typing import Any, Dict, Optional


class DetoxUserError(Exception):
    """An instructional error intended for end users.

    Use this for mistakes in parse options or pipeline definitions (invalid params, missing columns, etc.).
    It carries a short error code and an optional hint to guide the user.
    """

    def __init__(self, code: str, message: str, *, hint: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.hint:
            return base + f"\nHint: {self.hint}"
        return base


class ParseError(DetoxUserError):
    """Raised when a file cannot be turned into a table.

    `cause` holds the lower-level exception when an unexpected failure was wrapped.
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        hint: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(code, message, hint=hint)
        self.cause = cause


class StepError(DetoxUserError):
    """A pipeline step failed; records which step and why."""

    def __init__(
        self,
        step_index: int,
        step_id: Optional[str],
        op: str,
        cause: BaseException,
    ):
        code = getattr(cause, "code", None) or "E_STEP_FAILED"
        message = getattr(cause, "message", None) or str(cause)
        super().__init__(
            code,
            f"Step #{step_index} ({op}) failed: {message}",
            hint=getattr(cause, "hint", None),
        )
        self.step_index = step_index
        self.step_id = step_id
        self.op = op
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_index": self.step_index,
            "step_id": self.step_id,
            "op": self.op,
            "code": self.code,
            "message": self.message,
        }
