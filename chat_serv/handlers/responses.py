"""Result to HTTP response conversion."""

from typing import Any

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from chat_serv.models.api_models import ERROR_HTTP_STATUS, Result


def envelope(status_code: int, data: Any = None, message: str = "") -> JSONResponse:
    """Build the common {statusCode, data, message, success} body."""

    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "data": jsonable_encoder(data, by_alias=True) if data is not None else {},
            "message": message,
            "success": status_code < 400,
        }
    )


def make_response(result: Result, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Convert service result into a JSON response."""

    if result.success:
        return envelope(success_status, result.data, result.message or "Success")

    status_code = ERROR_HTTP_STATUS.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return envelope(status_code, None, result.error_message or "Request failed")
