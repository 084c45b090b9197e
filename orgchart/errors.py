from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    """Error rendered as the ``{"error": {...}}`` envelope by the app handlers."""

    def __init__(self, status_code: int, code: str, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class NodeNotFoundError(ApiError):
    def __init__(self, node_id: str, *, code: str = "NODE_NOT_FOUND"):
        super().__init__(
            status_code=404,
            code=code,
            message=f"Org chart node not found: {node_id}",
            details={"node_id": node_id},
        )
        self.node_id = node_id


class NodeHasChildrenError(ApiError):
    def __init__(self, node_id: str, *, child_count: int):
        super().__init__(
            status_code=409,
            code="NODE_HAS_CHILDREN",
            message="Node has children; delete them first or pass cascade=true.",
            details={"node_id": node_id, "child_count": child_count},
        )
        self.node_id = node_id
        self.child_count = child_count


def get_request_id(request: Request) -> str:
    return str(getattr(request.state, "request_id", None) or "unknown")


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})
