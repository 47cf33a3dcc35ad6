"""
End-user verification endpoints.

The QR sticker links to ``GET /verify?verify=<batch id>``; the user then
submits the scratch code to ``POST /verify``. USSD and SMS fallbacks are
reduced-assurance lookups that never check the code.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from medverify.api.dependencies import get_service
from medverify.api.schemas import (
    CodeCheckRequest,
    SmsRequest,
    UssdRequest,
    VerificationLandingResponse,
    VerificationResponse,
)
from medverify.services.verification import VerificationService

router = APIRouter(prefix="/verify", tags=["verification"])

ServiceDep = Annotated[VerificationService, Depends(get_service)]


@router.get("", response_model=VerificationLandingResponse)
async def verification_landing(
    service: ServiceDep,
    batch_id: Annotated[str, Query(alias="verify", description="Batch id from the QR code")],
) -> VerificationLandingResponse:
    """
    Landing page data for a scanned QR code.

    Shows which batch was scanned and asks for the scratch code. Nothing
    is recorded until the code is submitted.
    """
    batch = service.get_batch(batch_id)
    if batch is None:
        return VerificationLandingResponse(
            batch_id=batch_id,
            found=False,
            message="SUSPECT: batch not found",
        )
    return VerificationLandingResponse(
        batch_id=batch_id,
        found=True,
        product=batch.meta.product,
        batch_no=batch.meta.batch_no,
        message="Enter the scratch code from the pack to verify",
    )


@router.post("", response_model=VerificationResponse)
async def verify_batch(request: CodeCheckRequest, service: ServiceDep) -> VerificationResponse:
    """
    Verify a batch with its one-time code.

    **Verdicts:**
    - AUTHENTIC: code correct and batch proof intact
    - SUSPECT: not found, locked, wrong code, or proof mismatch (see ``reason``)
    """
    outcome = await service.verify(request.batch_id, request.code)
    return VerificationResponse.from_outcome(outcome)


@router.post("/ussd", response_model=VerificationResponse)
async def verify_ussd(request: UssdRequest, service: ServiceDep) -> VerificationResponse:
    """Feature-phone short code lookup (existence only)."""
    return VerificationResponse.from_outcome(service.ussd_lookup(request.command))


@router.post("/sms", response_model=VerificationResponse)
async def verify_sms(request: SmsRequest, service: ServiceDep) -> VerificationResponse:
    """SMS lookup returning batch metadata (no code check)."""
    return VerificationResponse.from_outcome(service.sms_lookup(request.batch_id, request.phone))
