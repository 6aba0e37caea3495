from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import BulkDeletePayload, BulkStatusPayload, LeadUpdate
from ..services import leads as lead_service
from ..services.mailer import send_lead_emails
from ..utils import require_admin_user

router = APIRouter(prefix="/api/admin/leads", tags=["admin", "leads"])


@router.get("")
async def admin_list_leads(
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    result = await lead_service.list_leads(db, search=search, status=status, page=page, page_size=page_size)
    result["items"] = [lead_service.lead_to_dict(lead) for lead in result["items"]]
    return result


@router.get("/export")
async def admin_export_leads(
    search: Optional[str] = None,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    body = await lead_service.export_leads_csv(db, search=search, status=status)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="leads-{stamp}.csv"'},
    )


@router.post("/bulk-status")
async def admin_bulk_status(
    payload: BulkStatusPayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    updated = await lead_service.bulk_update_status(db, payload.ids, payload.status)
    return {"ok": True, "updated": updated}


@router.post("/bulk-delete")
async def admin_bulk_delete(
    payload: BulkDeletePayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    deleted = await lead_service.bulk_delete(db, payload.ids)
    return {"ok": True, "deleted": deleted}


@router.get("/{lead_id}")
async def admin_get_lead(
    lead_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return lead_service.lead_to_dict(await lead_service.get_lead(db, lead_id))


@router.patch("/{lead_id}")
async def admin_update_lead(
    lead_id: str,
    payload: LeadUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    lead = await lead_service.update_lead(db, lead_id, status=payload.status, notes=payload.notes)
    return {"ok": True, "lead": lead_service.lead_to_dict(lead)}


@router.post("/{lead_id}/resend-emails")
async def admin_resend_lead_emails(
    lead_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    lead = await lead_service.get_lead(db, lead_id)
    result = await send_lead_emails(db, lead)
    return {"ok": not result["errors"], **result}
