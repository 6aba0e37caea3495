from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import PdfPreviewPayload, PdfShortcodeCreate, PdfShortcodeUpdate
from ..services import pdf_shortcodes as pdf_service
from ..services.leads import get_lead
from ..utils import require_admin_user

router = APIRouter(prefix="/api/admin/pdf-shortcodes", tags=["admin", "pdf"])


class TemplatePayload(BaseModel):
    template: str


@router.get("")
async def admin_list_pdf_shortcodes(
    category: Optional[str] = None,
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    rows = await pdf_service.list_pdf_shortcodes(db, active_only=active_only, category=category)
    return {
        "shortcodes": [pdf_service.pdf_shortcode_to_dict(sc) for sc in rows],
        "categories": await pdf_service.pdf_shortcode_categories(db),
    }


@router.post("")
async def admin_create_pdf_shortcode(
    payload: PdfShortcodeCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    sc = await pdf_service.create_pdf_shortcode(db, payload.model_dump())
    return {"ok": True, "shortcode": pdf_service.pdf_shortcode_to_dict(sc)}


@router.post("/preview")
async def admin_preview_pdf_template(
    payload: PdfPreviewPayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    """Render a template against a stored lead or against sample data."""
    lead = await get_lead(db, payload.lead_id) if payload.lead_id else payload.sample
    processor = pdf_service.PdfShortcodeProcessor(lead, payload.custom_values)
    rendered = await processor.process(db, payload.template)
    return {"content": rendered}


@router.post("/validate")
async def admin_validate_pdf_template(
    payload: TemplatePayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    known = [sc.code for sc in await pdf_service.list_pdf_shortcodes(db, active_only=True)]
    return pdf_service.validate_pdf_template(payload.template, known)


@router.get("/{shortcode_id}")
async def admin_get_pdf_shortcode(
    shortcode_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return pdf_service.pdf_shortcode_to_dict(await pdf_service.get_pdf_shortcode(db, shortcode_id))


@router.patch("/{shortcode_id}")
async def admin_update_pdf_shortcode(
    shortcode_id: str,
    payload: PdfShortcodeUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    sc = await pdf_service.update_pdf_shortcode(db, shortcode_id, payload.model_dump(exclude_unset=True))
    return {"ok": True, "shortcode": pdf_service.pdf_shortcode_to_dict(sc)}


@router.delete("/{shortcode_id}")
async def admin_delete_pdf_shortcode(
    shortcode_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    await pdf_service.delete_pdf_shortcode(db, shortcode_id)
    return {"ok": True}
