"""Translation of operation envelopes into HTTP responses."""

from typing import Optional, Type

from fastapi import Response, status
from pydantic import BaseModel

from parking_core.schemas.parking import OperationEnvelope
from parking_core.services.parking_service import ParkingOperationResult

STATUS_BY_ERROR_CODE = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "CONFLICT": status.HTTP_409_CONFLICT,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "CAPACITY_EXCEEDED": status.HTTP_503_SERVICE_UNAVAILABLE,
    "TIMEOUT": status.HTTP_504_GATEWAY_TIMEOUT,
}


def status_for(result: ParkingOperationResult) -> int:
    if result.success:
        return status.HTTP_200_OK
    return STATUS_BY_ERROR_CODE.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def build_envelope(
    result: ParkingOperationResult,
    data_schema: Type[BaseModel],
    response: Response,
    success_status: Optional[int] = None,
) -> OperationEnvelope:
    """Serialize ``result`` and set the status code on ``response``."""
    response.status_code = success_status if result.success and success_status else status_for(result)
    data = None
    if result.data is not None:
        data = data_schema.model_validate(result.data, from_attributes=True)
    return OperationEnvelope[data_schema](
        success=result.success,
        data=data,
        error=result.error,
        error_code=result.error_code,
        details=result.details,
        transaction_id=result.transaction_id,
        duration_ms=result.duration_ms,
    )
