from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from medconnect.core.exceptions import BaseCustomException, create_error_response

STATUS_BY_ERROR_CODE = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "EXPIRED": status.HTTP_410_GONE,
    "ALREADY_CONSUMED": status.HTTP_409_CONFLICT,
    "INVALID_STATE_TRANSITION": status.HTTP_409_CONFLICT,
    "VALIDATION_FAILED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "CORRUPT": status.HTTP_400_BAD_REQUEST,
    "CONCURRENCY_CONFLICT": status.HTTP_409_CONFLICT,
}


async def workflow_exception_handler(request: Request, exc: BaseCustomException) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_BY_ERROR_CODE.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=create_error_response(exc, request.headers.get("X-Request-ID")),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseCustomException, workflow_exception_handler)
