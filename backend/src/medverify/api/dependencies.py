"""
Shared route dependencies.
"""

from fastapi import HTTPException, Request, status

from medverify.services.verification import OperationResult, VerificationService


# Error code -> HTTP status for failed operations
ERROR_STATUS = {
    "not-found": status.HTTP_404_NOT_FOUND,
    "invalid-input": status.HTTP_400_BAD_REQUEST,
    "import-parse-error": status.HTTP_400_BAD_REQUEST,
}


def get_service(request: Request) -> VerificationService:
    """Verification service created by the application lifespan."""
    return request.app.state.service


def raise_for_result(result: OperationResult) -> None:
    """Turn a failed OperationResult into an HTTPException."""
    if result.success:
        return
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
        detail=result.message,
    )
