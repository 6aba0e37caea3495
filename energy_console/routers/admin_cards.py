from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import CardCreate, CardRulesPayload, CardUpdate, FieldCreate, FieldUpdate, ReorderPayload
from ..services import cards as card_service
from ..utils import require_admin_user

router = APIRouter(prefix="/api/admin/cards", tags=["admin", "cards"])


@router.get("")
async def admin_list_cards(
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    cards = await card_service.list_cards(db, active_only=active_only)
    return {"cards": [card_service.card_to_dict(c) for c in cards]}


@router.post("")
async def admin_create_card(
    payload: CardCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    data = payload.model_dump(exclude={"fields"}, exclude_none=True)
    card = await card_service.create_card(db, data)
    for f in payload.fields:
        await card_service.add_field(db, card.id, f.model_dump(exclude_none=True))
    card = await card_service.get_card(db, card.id)
    return {"ok": True, "card": card_service.card_to_dict(card)}


@router.post("/reorder")
async def admin_reorder_cards(
    payload: ReorderPayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    cards = await card_service.reorder_cards(db, payload.ids)
    return {"ok": True, "order": [c.id for c in cards]}


@router.post("/cleanup-orphans")
async def admin_cleanup_orphans(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    removed = await card_service.cleanup_orphaned_fields(db)
    return {"ok": True, "removed": removed}


@router.get("/{card_id}")
async def admin_get_card(
    card_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return card_service.card_to_dict(await card_service.get_card(db, card_id))


@router.patch("/{card_id}")
async def admin_update_card(
    card_id: str,
    payload: CardUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    card = await card_service.update_card(db, card_id, payload.model_dump(exclude_unset=True))
    return {"ok": True, "card": card_service.card_to_dict(card)}


@router.delete("/{card_id}")
async def admin_delete_card(
    card_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    await card_service.delete_card(db, card_id)
    return {"ok": True}


@router.post("/{card_id}/duplicate")
async def admin_duplicate_card(
    card_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    copy = await card_service.duplicate_card(db, card_id)
    return {"ok": True, "card": card_service.card_to_dict(copy)}


@router.put("/{card_id}/rules")
async def admin_set_card_rules(
    card_id: str,
    payload: CardRulesPayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    card = await card_service.set_card_rules(
        db, card_id, payload.completion.model_dump(), payload.reveal.model_dump(exclude_none=True)
    )
    return {"ok": True, "card": card_service.card_to_dict(card)}


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------

@router.post("/{card_id}/fields")
async def admin_add_field(
    card_id: str,
    payload: FieldCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    f = await card_service.add_field(db, card_id, payload.model_dump(exclude_none=True))
    return {"ok": True, "field": card_service.field_to_dict(f)}


@router.post("/{card_id}/fields/reorder")
async def admin_reorder_fields(
    card_id: str,
    payload: ReorderPayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    fields = await card_service.reorder_fields(db, card_id, payload.ids)
    return {"ok": True, "order": [f.id for f in fields]}


@router.patch("/{card_id}/fields/{field_id}")
async def admin_update_field(
    card_id: str,
    field_id: str,
    payload: FieldUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    f = await card_service.update_field(db, card_id, field_id, payload.model_dump(exclude_unset=True))
    return {"ok": True, "field": card_service.field_to_dict(f)}


@router.delete("/{card_id}/fields/{field_id}")
async def admin_delete_field(
    card_id: str,
    field_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    await card_service.delete_field(db, card_id, field_id)
    return {"ok": True}
