"""Response envelope shared by every endpoint.

Shape::

    {"success": bool, "data": ... | null, "error": {"code", "message"} | null,
     "meta": {"correlationId", "timestamp", "service"}}
"""

from datetime import UTC, datetime
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from calvarypay.core.config import get_settings
from calvarypay.middleware.correlation import get_correlation_id


def build_meta(correlation_id: str | None = None) -> dict:
    return {
        "correlationId": correlation_id or get_correlation_id(),
        "timestamp": datetime.now(UTC).isoformat(),
        "service": get_settings().service_name,
    }


def success_response(data: Any, status_code: int = 200, correlation_id: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": True,
            "data": jsonable_encoder(data, by_alias=True),
            "error": None,
            "meta": build_meta(correlation_id),
        },
    )


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    correlation_id: str | None = None,
    debug_id: str | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = jsonable_encoder(details)
    if debug_id is not None:
        error["debugId"] = debug_id
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": error,
            "meta": build_meta(correlation_id),
        },
    )
