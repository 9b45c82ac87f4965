"""
Result Responses
================

Translates application ``OperationResult`` values into HTTP responses.

Successful results are returned as plain dicts so FastAPI validates them
against the route's ``response_model``. Failures become JSON responses whose
status code follows the error code; NO_ELIGIBLE_CANDIDATE is a normal
outcome and keeps status 200.
"""

from typing import Any, Dict, Optional, Union

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from taskflow.core import OperationResult

STATUS_BY_ERROR_CODE: Dict[str, int] = {
    "NOT_FOUND": 404,
    "FORBIDDEN": 403,
    "VALIDATION_ERROR": 422,
    "ALREADY_PAUSED": 409,
    "NOT_PAUSED": 409,
    "CONCURRENCY_CONFLICT": 409,
    "GUARDRAIL_VIOLATION": 409,
    "INVALID_ESCALATION_STATE": 409,
    "CONFIGURATION_ERROR": 500,
}

SOFT_FAILURE_CODES = frozenset({"NO_ELIGIBLE_CANDIDATE"})


class ResultEnvelope(BaseModel):
    """Common shape of every operation response; subclasses narrow ``data``."""
    success: bool = Field(..., description="Whether the operation succeeded")
    error_code: Optional[str] = Field(None, description="Typed failure reason")
    error: Optional[str] = Field(None, description="Human readable failure message")
    details: Optional[Dict[str, Any]] = Field(None, description="Failure context")


def status_for(error_code: Optional[str]) -> int:
    if error_code is None or error_code in SOFT_FAILURE_CODES:
        return 200
    return STATUS_BY_ERROR_CODE.get(error_code, 400)


def result_response(result: OperationResult) -> Union[Dict[str, Any], JSONResponse]:
    """Render a result for a route declared with a ResultEnvelope response model."""
    body = result.to_dict()
    status_code = status_for(result.error_code)
    if result.success or status_code == 200:
        return body
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))
