"""
Admin endpoints: KYC, incidents, scan log, KPIs, reports and backups.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status

from medverify.api.dependencies import get_service, raise_for_result
from medverify.api.schemas import (
    IncidentRequest,
    IncidentResponse,
    KpiResponse,
    ManufacturerResponse,
    MessageResponse,
    ScanResponse,
)
from medverify.services.verification import VerificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

ServiceDep = Annotated[VerificationService, Depends(get_service)]


def _attachment(content: str, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/kpis", response_model=KpiResponse)
async def get_kpis(service: ServiceDep) -> KpiResponse:
    kpis = service.kpis()
    return KpiResponse(
        scans=kpis.scans,
        suspect_scans=kpis.suspect_scans,
        incidents=kpis.incidents,
        batches=kpis.batches,
        manufacturers=kpis.manufacturers,
    )


@router.get("/manufacturers", response_model=list[ManufacturerResponse])
async def list_manufacturers(service: ServiceDep) -> list[ManufacturerResponse]:
    return [ManufacturerResponse.from_domain(m) for m in service.list_manufacturers()]


@router.post(
    "/manufacturers/{manufacturer_id}/toggle-kyc",
    response_model=ManufacturerResponse,
    responses={404: {"description": "Manufacturer not found"}},
)
async def toggle_kyc(manufacturer_id: str, service: ServiceDep) -> ManufacturerResponse:
    """
    Flip KYC between approved and pending.

    The manufacturer record is part of every batch proof, so batches
    registered before the toggle will verify as proof-mismatch afterwards.
    """
    result = await service.toggle_kyc(manufacturer_id)
    raise_for_result(result)
    return ManufacturerResponse.from_domain(result.value)


@router.get("/incidents", response_model=list[IncidentResponse])
async def list_incidents(service: ServiceDep) -> list[IncidentResponse]:
    """Incidents, newest first."""
    return [IncidentResponse.from_domain(i) for i in service.list_incidents()]


@router.post(
    "/incidents",
    response_model=IncidentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Missing batch id or reason"},
        404: {"description": "Batch not found"},
    },
)
async def report_incident(request: IncidentRequest, service: ServiceDep) -> IncidentResponse:
    result = await service.report_incident(request.batch_id, request.reason, request.notes)
    raise_for_result(result)
    return IncidentResponse.from_domain(result.value)


@router.get("/scans", response_model=list[ScanResponse])
async def list_scans(service: ServiceDep) -> list[ScanResponse]:
    """Scan / event log, newest first."""
    return [ScanResponse.from_domain(s) for s in service.list_scans()]


@router.get("/export/incidents.csv")
async def export_incidents_csv(service: ServiceDep) -> Response:
    return _attachment(service.incidents_csv(), "text/csv", "incidents.csv")


@router.get("/export/anchors.csv")
async def export_anchors_csv(service: ServiceDep) -> Response:
    return _attachment(service.anchors_csv(), "text/csv", "anchors.csv")


@router.get("/export")
async def export_state(service: ServiceDep) -> Response:
    """Full state document for backup."""
    return _attachment(service.export_document(), "application/json", "medverify_state.json")


@router.post(
    "/import",
    response_model=MessageResponse,
    responses={400: {"description": "Document could not be parsed or validated"}},
)
async def import_state(
    file: Annotated[UploadFile, File(description="State document exported from /admin/export")],
    service: ServiceDep,
) -> MessageResponse:
    """Restore the whole state from a backup. The current state is kept if the file is invalid."""
    try:
        content = await file.read()
    except Exception as e:
        logger.exception("Failed to read uploaded state document")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Failed to read file: {str(e)}",
        )

    result = await service.import_document(content)
    raise_for_result(result)
    return MessageResponse(message=result.message)


@router.post("/reset", response_model=MessageResponse)
async def reset_state(service: ServiceDep) -> MessageResponse:
    """Wipe all state and re-seed the demo data."""
    result = await service.reset_document()
    return MessageResponse(message=result.message)
