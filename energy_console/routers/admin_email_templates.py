from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import EmailPreviewPayload, EmailTemplateCreate, EmailTemplateUpdate
from ..services import email_templates as template_service
from ..services.leads import get_lead
from ..utils import require_admin_user

router = APIRouter(prefix="/api/admin/email-templates", tags=["admin", "email"])


@router.get("")
async def admin_list_email_templates(
    category: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    rows = await template_service.list_email_templates(db, category)
    return {"templates": [template_service.email_template_to_dict(t) for t in rows]}


@router.post("")
async def admin_create_email_template(
    payload: EmailTemplateCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    t = await template_service.create_email_template(db, payload.model_dump())
    return {"ok": True, "template": template_service.email_template_to_dict(t)}


@router.get("/{template_id}")
async def admin_get_email_template(
    template_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return template_service.email_template_to_dict(await template_service.get_email_template(db, template_id))


@router.patch("/{template_id}")
async def admin_update_email_template(
    template_id: str,
    payload: EmailTemplateUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    t = await template_service.update_email_template(db, template_id, payload.model_dump(exclude_unset=True))
    return {"ok": True, "template": template_service.email_template_to_dict(t)}


@router.post("/{template_id}/preview")
async def admin_preview_email_template(
    template_id: str,
    payload: EmailPreviewPayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    t = await template_service.get_email_template(db, template_id)
    lead = await get_lead(db, payload.lead_id) if payload.lead_id else None
    context = {**template_service.lead_shortcode_context(lead), **payload.context}
    subject, body = await template_service.render_email_template(db, t, context)
    return {"subject": subject, "content": body}


@router.delete("/{template_id}")
async def admin_delete_email_template(
    template_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    await template_service.delete_email_template(db, template_id)
    return {"ok": True}
