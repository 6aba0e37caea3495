from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import ContentPayload, ShortcodeCreate, ShortcodeUpdate
from ..services import shortcodes as shortcode_service
from ..utils import require_admin_user

router = APIRouter(prefix="/api/admin/shortcodes", tags=["admin", "shortcodes"])


class DisplayPreviewPayload(BaseModel):
    content: str
    form_data: dict = Field(default_factory=dict)


@router.get("")
async def admin_list_shortcodes(
    category: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    rows = await shortcode_service.list_shortcodes(db, category)
    return {"shortcodes": [shortcode_service.shortcode_to_dict(s) for s in rows]}


@router.post("")
async def admin_create_shortcode(
    payload: ShortcodeCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    row = await shortcode_service.create_shortcode(db, payload.model_dump())
    return {"ok": True, "shortcode": shortcode_service.shortcode_to_dict(row)}


@router.post("/process")
async def admin_process_shortcodes(
    payload: ContentPayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return {"content": await shortcode_service.process_shortcodes(db, payload.content, payload.context)}


@router.get("/display/available")
async def admin_available_display_shortcodes(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return {"shortcodes": await shortcode_service.available_shortcodes(db)}


@router.post("/display/validate")
async def admin_validate_display_content(
    payload: DisplayPreviewPayload,
    admin=Depends(require_admin_user),
):
    return shortcode_service.validate_shortcode_syntax(payload.content)


@router.post("/display/preview")
async def admin_preview_display_content(
    payload: DisplayPreviewPayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    rendered = await shortcode_service.process_display_content(db, payload.content, payload.form_data)
    return {"content": rendered}


@router.get("/{shortcode_id}")
async def admin_get_shortcode(
    shortcode_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return shortcode_service.shortcode_to_dict(await shortcode_service.get_shortcode(db, shortcode_id))


@router.patch("/{shortcode_id}")
async def admin_update_shortcode(
    shortcode_id: str,
    payload: ShortcodeUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    row = await shortcode_service.update_shortcode(db, shortcode_id, payload.model_dump(exclude_unset=True))
    return {"ok": True, "shortcode": shortcode_service.shortcode_to_dict(row)}


@router.delete("/{shortcode_id}")
async def admin_delete_shortcode(
    shortcode_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    await shortcode_service.delete_shortcode(db, shortcode_id)
    return {"ok": True}
