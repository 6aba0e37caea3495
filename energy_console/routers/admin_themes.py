from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import CardOverridePayload, ThemeCore, ThemeCreate, ThemeUpdate
from ..services import themes as theme_service
from ..utils import require_admin_user

router = APIRouter(prefix="/api/admin/themes", tags=["admin", "themes"])


@router.get("")
async def admin_list_themes(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    themes = await theme_service.list_themes(db)
    return {"themes": [theme_service.theme_to_dict(t) for t in themes]}


@router.get("/active")
async def admin_active_theme(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return await theme_service.get_active_theme(db)


@router.post("/preview")
async def admin_preview_theme(
    payload: ThemeCore,
    admin=Depends(require_admin_user),
):
    """Computed colours and CSS variables for unsaved editor values."""
    data = theme_service.build_theme_data(payload.model_dump(exclude_none=True))
    return {"theme_data": data, "css": theme_service.theme_css_variables(data)}


@router.post("")
async def admin_create_theme(
    payload: ThemeCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    core = payload.model_dump(exclude={"name", "description"}, exclude_none=True)
    theme = await theme_service.create_theme(db, core, payload.name, payload.description)
    return {"ok": True, "theme": theme_service.theme_to_dict(theme)}


@router.get("/{theme_id}")
async def admin_get_theme(
    theme_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return theme_service.theme_to_dict(await theme_service.get_theme(db, theme_id))


@router.get("/{theme_id}/css", response_class=PlainTextResponse)
async def admin_theme_css(
    theme_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    theme = await theme_service.get_theme(db, theme_id)
    return PlainTextResponse(theme_service.theme_css_variables(theme.theme_data or {}), media_type="text/css")


@router.patch("/{theme_id}")
async def admin_update_theme(
    theme_id: str,
    payload: ThemeUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    theme = await theme_service.update_theme(db, theme_id, payload.model_dump(exclude_unset=True))
    return {"ok": True, "theme": theme_service.theme_to_dict(theme)}


@router.post("/{theme_id}/activate")
async def admin_activate_theme(
    theme_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    theme = await theme_service.activate_theme(db, theme_id)
    return {"ok": True, "theme": theme_service.theme_to_dict(theme)}


@router.delete("/{theme_id}")
async def admin_delete_theme(
    theme_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    await theme_service.delete_theme(db, theme_id)
    return {"ok": True}


@router.get("/{theme_id}/overrides")
async def admin_card_overrides(
    theme_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return {"overrides": await theme_service.get_card_overrides(db, theme_id)}


@router.put("/{theme_id}/overrides/{card_id}")
async def admin_set_card_override(
    theme_id: str,
    card_id: str,
    payload: CardOverridePayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    row = await theme_service.set_card_override(db, card_id, theme_id, payload.style_overrides)
    return {"ok": True, "style_overrides": row.style_overrides}


@router.delete("/{theme_id}/overrides/{card_id}")
async def admin_remove_card_override(
    theme_id: str,
    card_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    removed = await theme_service.remove_card_override(db, card_id, theme_id)
    return {"ok": True, "removed": removed}
