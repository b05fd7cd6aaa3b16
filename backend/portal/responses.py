"""The `{success, message?, data?, pagination?}` response envelope."""

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def envelope(data: Any = None, message: Optional[str] = None, pagination: Optional[dict] = None, **extra) -> dict:
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    body.update(extra)
    return body


def error_response(status_code: int, message: str, headers: Optional[dict] = None, **extra) -> JSONResponse:
    body = {"success": False, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)
