"""
Stock Intel Tools
───────────────────
Closed catalog of capabilities plus the executor that wraps every call
with dedup, durable caching, rate limiting, timeouts and error classification.

    from analysis_engine.tools.executor import ToolExecutor
    result = await executor.execute("get_technicals", {"symbol": "ITC"})
"""

from .errors import ErrorCode, ToolError
from .registry import Capability, ToolRegistry
from .result import ToolResult

__all__ = ["ErrorCode", "ToolError", "Capability", "ToolRegistry", "ToolResult"]
