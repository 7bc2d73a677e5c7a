from fastapi import HTTPException  # type: ignore[import-not-found]

from ..errors import RegistryError

STATUS_BY_CODE = {
    "VALIDATION_ERROR": 422,
    "CONFLICT": 409,
    "NOT_FOUND": 404,
    "IO_FAILURE": 503,
}


def to_http_exception(exc: RegistryError) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_CODE.get(exc.code, 500),
        detail=exc.to_payload()["error"],
    )
