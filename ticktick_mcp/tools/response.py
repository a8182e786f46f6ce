"""Results returned by every TickTick tool.

Successes carry the envelope both as structured content and as JSON text.
Failures are raised as ``ToolError`` so MCP clients receive ``isError``.
"""

import json
import logging
from typing import Any

from fastmcp.exceptions import ToolError
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent

from ticktick_mcp.core.exceptions import InternalError, to_app_error

logger = logging.getLogger(__name__)


def _render(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, default=str)


def tool_success(data: dict[str, Any], message: str) -> ToolResult:
    """Build ``{ok: true, message, ...data}``."""
    payload = {"ok": True, "message": message, **data}
    return ToolResult(
        content=[TextContent(type="text", text=_render(payload))],
        structured_content=payload,
    )


def tool_error(error: BaseException) -> ToolError:
    """Wrap any failure in a ToolError whose text is ``{ok: false, code, message, details}``."""
    app_error = to_app_error(error)
    if isinstance(app_error, InternalError):
        logger.error("Unexpected tool failure: %s", error, exc_info=error)
    else:
        logger.info("Tool failed with %s: %s", app_error.code, app_error.message)
    payload: dict[str, Any] = {
        "ok": False,
        "code": app_error.code,
        "message": app_error.message,
    }
    if app_error.details is not None:
        payload["details"] = app_error.details
    return ToolError(_render(payload))
