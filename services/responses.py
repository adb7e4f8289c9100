"""
Response envelopes shared by every router.

Success: {code, message, data[, meta]}
Error:   {code, message, body}
"""

import math
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(code: int, message: str, data: Any = None, pagination: Optional[dict] = None) -> JSONResponse:
    content = {
        "code": code,
        "message": message,
        "data": data if data is not None else [],
    }
    if pagination:
        content["meta"] = pagination
    return JSONResponse(status_code=code, content=jsonable_encoder(content))


def error_response(code: int, message: str, body: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=code,
        content=jsonable_encoder({"code": code, "message": message, "body": body if body is not None else []}),
    )


def paginate(page: int, limit: int, total: int) -> dict:
    return {
        "current_page": page,
        "per_page": limit,
        "total": total,
        "last_page": math.ceil(total / limit) if limit else 0,
        "from": (page - 1) * limit + 1,
        "to": min(page * limit, total),
    }


def page_window(page: Optional[int], limit: Optional[int], default_limit: int = 10, max_limit: int = 100):
    """Clamp raw query params to (page, limit) with page >= 1 and 1 <= limit <= max_limit."""
    page = max(1, page or 1)
    limit = min(max_limit, max(1, limit or default_limit))
    return page, limit
