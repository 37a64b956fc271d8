"""FastAPI dependencies and result-to-HTTP error mapping."""
from __future__ import annotations

from typing import Any, NoReturn

from fastapi import HTTPException, Request, status

from aiteam.core.result import CONFLICT_CODES, EXHAUSTION_CODES, NOT_FOUND_CODES, Result, ServiceError
from aiteam.runtime import TeamRuntime


def get_runtime(request: Request) -> TeamRuntime:
    return request.app.state.runtime


def http_status_for(error: ServiceError) -> int:
    if error.code in NOT_FOUND_CODES:
        return status.HTTP_404_NOT_FOUND
    if error.code in CONFLICT_CODES:
        return status.HTTP_409_CONFLICT
    if error.code in EXHAUSTION_CODES:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def raise_error(error: ServiceError) -> NoReturn:
    raise HTTPException(status_code=http_status_for(error), detail=error.as_dict())


def unwrap(result: Result[Any]) -> Any:
    """Return the payload of a successful result or raise the mapped HTTP error."""
    if not result.success:
        assert result.error is not None
        raise_error(result.error)
    return result.data
