"""
Stock Intel — Tool Result Envelope
────────────────────────────────────
Every capability call returns a ToolResult — success with a typed payload,
or failure with a classified error. Raw exceptions never cross the executor.

Wire shape (to_dict):
    {
      "success": bool,
      "data":    {...} | null,
      "error":   {"code", "message", "retryable"} | null,
      "meta":    {"from_cache", "cache_age_hours", "source_class", "fetched_at"}
    }
"""

from dataclasses import dataclass, field, replace, asdict
from typing import Any, Optional

from analysis_engine.tools.errors import ErrorCode, ToolErrorInfo


@dataclass(frozen=True)
class ToolMeta:
    source_class:    Optional[str] = None
    fetched_at:      Optional[str] = None
    from_cache:      bool = False
    cache_age_hours: Optional[float] = None


@dataclass(frozen=True)
class ToolResult:
    success: bool
    data:    Any = None
    error:   Optional[ToolErrorInfo] = None
    meta:    ToolMeta = field(default_factory=ToolMeta)

    @classmethod
    def ok(cls, data: Any, meta: Optional[ToolMeta] = None) -> "ToolResult":
        return cls(success=True, data=data, meta=meta or ToolMeta())

    @classmethod
    def fail(cls, code: ErrorCode, message: str, meta: Optional[ToolMeta] = None) -> "ToolResult":
        return cls(success=False, error=ToolErrorInfo.of(code, message), meta=meta or ToolMeta())

    @classmethod
    def from_error(cls, error: ToolErrorInfo, meta: Optional[ToolMeta] = None) -> "ToolResult":
        return cls(success=False, error=error, meta=meta or ToolMeta())

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)

    def tagged(self, **meta_changes) -> "ToolResult":
        """Copy with updated provenance (e.g. from_cache=True)."""
        return replace(self, meta=replace(self.meta, **meta_changes))

    def to_dict(self) -> dict:
        data = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
        return {
            "success": self.success,
            "data":    data,
            "error":   self.error.to_dict() if self.error else None,
            "meta":    asdict(self.meta),
        }
