from typing import Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from vtc_booking.core.errors import ErrorCode
from vtc_booking.schemas.chat import ChatResponse, ErrorResponse

NO_STORE_HEADERS = {"Cache-Control": "no-store"}


def build_json_response(
    body: BaseModel,
    status_code: int = 200,
    headers: Optional[dict] = None,
    exclude_none: bool = True,
) -> JSONResponse:
    return JSONResponse(
        content=body.model_dump(mode="json", by_alias=True, exclude_none=exclude_none),
        status_code=status_code,
        headers={**NO_STORE_HEADERS, **(headers or {})},
    )


def build_error_response(code: ErrorCode, retry_after_seconds: Optional[int] = None) -> JSONResponse:
    headers = {}
    if retry_after_seconds is not None:
        headers["Retry-After"] = str(retry_after_seconds)
    body = ErrorResponse(error=code.value, retry_after_seconds=retry_after_seconds)
    return build_json_response(body, status_code=code.http_status, headers=headers)


def build_chat_response(outcome) -> JSONResponse:
    return build_json_response(ChatResponse(
        reply=outcome.reply,
        form_update=outcome.form_update,
        vehicle_quotes=outcome.vehicle_quotes,
        state=outcome.flags,
        history=outcome.history,
    ))
