"""
Batch registration and lab attestation endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from medverify.api.dependencies import get_service, raise_for_result
from medverify.api.schemas import (
    BatchResponse,
    LabReportRequest,
    LabReportResponse,
    RegisterBatchRequest,
    RegisterBatchResponse,
    VerificationLinkResponse,
)
from medverify.services.verification import VerificationService


router = APIRouter(prefix="/batches", tags=["batches"])

ServiceDep = Annotated[VerificationService, Depends(get_service)]


@router.post(
    "",
    response_model=RegisterBatchResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Missing manufacturer or product name"},
    },
)
async def register_batch(
    request: RegisterBatchRequest,
    service: ServiceDep,
) -> RegisterBatchResponse:
    """
    Register a production batch and anchor its proof (simulated).

    The response carries the one-time scratch code exactly once; it is
    not returned by any other endpoint.
    """
    result = await service.register_batch(
        manufacturer_name=request.manufacturer_name,
        product=request.product,
        kyc=request.kyc.value,
        batch_no=request.batch_no,
        mfg=request.mfg,
        expiry=request.expiry,
        coa=request.coa,
    )
    raise_for_result(result)
    batch = result.value
    link = service.verification_link(batch.id)

    return RegisterBatchResponse(
        message=result.message,
        batch=BatchResponse.from_domain(batch),
        otp=batch.otp,
        verification_url=link.value.url,
    )


@router.get("", response_model=list[BatchResponse])
async def list_batches(service: ServiceDep) -> list[BatchResponse]:
    """All registered batches."""
    return [BatchResponse.from_domain(b) for b in service.list_batches()]


@router.get(
    "/{batch_id}",
    response_model=BatchResponse,
    responses={404: {"description": "Batch not found"}},
)
async def get_batch(batch_id: str, service: ServiceDep) -> BatchResponse:
    batch = service.get_batch(batch_id)
    if batch is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Batch not found: {batch_id}",
        )
    return BatchResponse.from_domain(batch)


@router.get(
    "/{batch_id}/link",
    response_model=VerificationLinkResponse,
    responses={404: {"description": "Batch not found"}},
)
async def get_verification_link(batch_id: str, service: ServiceDep) -> VerificationLinkResponse:
    """Verification URL printed as the batch QR code."""
    result = service.verification_link(batch_id)
    raise_for_result(result)
    return VerificationLinkResponse(batch_id=batch_id, url=result.value.url)


@router.get(
    "/{batch_id}/qr.png",
    responses={
        200: {"content": {"image/png": {}}, "description": "QR code image"},
        404: {"description": "Batch not found"},
    },
)
async def get_qr_code(batch_id: str, service: ServiceDep) -> Response:
    """QR code image for the batch sticker."""
    result = service.qr_png(batch_id)
    raise_for_result(result)
    return Response(content=result.value, media_type="image/png")


@router.post(
    "/{batch_id}/lab-reports",
    response_model=LabReportResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Missing lab name or summary"},
        404: {"description": "Batch not found"},
    },
)
async def upload_lab_report(
    batch_id: str,
    request: LabReportRequest,
    service: ServiceDep,
) -> LabReportResponse:
    """Attach a lab test report, hashed and anchored (simulated)."""
    result = await service.upload_lab_report(batch_id, request.lab, request.summary)
    raise_for_result(result)
    return LabReportResponse.from_domain(result.value)
