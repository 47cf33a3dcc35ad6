"""
Distributor and pharmacy endpoints.

Transfers record custody changes; receipts confirm arrival with the
batch one-time code and share its lockout policy with verification.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from medverify.api.dependencies import get_service, raise_for_result
from medverify.api.schemas import (
    CodeCheckRequest,
    TransferRequest,
    TransferResponse,
    VerificationResponse,
)
from medverify.services.verification import VerificationService

router = APIRouter(tags=["supply-chain"])

ServiceDep = Annotated[VerificationService, Depends(get_service)]


@router.post(
    "/transfers",
    response_model=TransferResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Missing distributor, destination or batch"},
        404: {"description": "Batch not found"},
    },
)
async def log_transfer(request: TransferRequest, service: ServiceDep) -> TransferResponse:
    """Log a shipment of a batch from one location to another."""
    result = await service.log_transfer(
        distributor=request.distributor,
        origin=request.origin,
        destination=request.destination,
        batch_id=request.batch_id,
        bol=request.bol,
    )
    raise_for_result(result)
    return TransferResponse.from_domain(result.value)


@router.get("/transfers", response_model=list[TransferResponse])
async def list_transfers(service: ServiceDep) -> list[TransferResponse]:
    """Recent transfers, newest first."""
    return [TransferResponse.from_domain(t) for t in service.list_transfers()]


@router.post("/receipts", response_model=VerificationResponse)
async def confirm_receipt(request: CodeCheckRequest, service: ServiceDep) -> VerificationResponse:
    """
    Pharmacy receipt confirmation.

    Always answers 200 with a verdict; wrong codes count towards the
    batch lockout.
    """
    outcome = await service.pharmacy_receive(request.batch_id, request.code)
    return VerificationResponse.from_outcome(outcome)
