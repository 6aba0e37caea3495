# energy_console/services/cards.py
"""Card and field management for the calculator builder."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.models import CardField, CardTemplate, CardType, FieldType
from energy_console.services.completion import normalize_card_rules, validate_rules_payload
from energy_console.services.errors import ConflictError, NotFoundError, ValidationFailed

logger = logging.getLogger(__name__)

CARD_COLUMNS = {
    "name", "title", "type", "display_order", "is_active", "config", "styling",
    "completion_rules", "reveal_timing", "reveal_next_conditions", "reveal_conditions",
    "visual_object_id",
}
FIELD_COLUMNS = {
    "field_name", "field_type", "label", "placeholder", "help_text", "validation_rules",
    "width", "display_order", "options", "required", "is_completion_required",
}
FIELD_WIDTHS = {"full", "half", "third"}


def field_to_dict(f: CardField) -> dict:
    return {
        "id": f.id,
        "card_id": f.card_id,
        "field_name": f.field_name,
        "field_type": f.field_type,
        "label": f.label,
        "placeholder": f.placeholder,
        "help_text": f.help_text,
        "validation_rules": f.validation_rules or {},
        "width": f.width,
        "display_order": f.display_order,
        "options": f.options or [],
        "required": bool(f.required),
        "is_completion_required": bool(f.is_completion_required),
    }


def card_to_dict(card: CardTemplate, *, with_rules: bool = True) -> dict:
    out = {
        "id": card.id,
        "name": card.name,
        "title": card.title,
        "type": card.type,
        "display_order": card.display_order,
        "is_active": bool(card.is_active),
        "config": card.config or {},
        "styling": card.styling or {},
        "completion_rules": card.completion_rules,
        "reveal_timing": card.reveal_timing,
        "reveal_next_conditions": card.reveal_next_conditions,
        "visual_object_id": card.visual_object_id,
        "fields": [field_to_dict(f) for f in card.fields or []],
    }
    if with_rules:
        out["rules"] = normalize_card_rules(card).as_dict()
    return out


def _check_card_values(values: dict) -> None:
    if "type" in values and values["type"] not in {t.value for t in CardType}:
        raise ValidationFailed(f"Unknown card type '{values['type']}'")
    for key in ("name", "title"):
        if key in values and not (values[key] or "").strip():
            raise ValidationFailed(f"Card {key} is required")


def _check_field_values(values: dict) -> None:
    if "field_type" in values and values["field_type"] not in {t.value for t in FieldType}:
        raise ValidationFailed(f"Unknown field type '{values['field_type']}'")
    if "width" in values and values["width"] not in FIELD_WIDTHS:
        raise ValidationFailed(f"Unknown field width '{values['width']}'")
    if "field_name" in values and not (values["field_name"] or "").strip():
        raise ValidationFailed("Field name is required")


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

async def list_cards(db: AsyncSession, *, active_only: bool = False) -> list[CardTemplate]:
    stmt = select(CardTemplate).order_by(CardTemplate.display_order, CardTemplate.created_at)
    if active_only:
        stmt = stmt.where(CardTemplate.is_active.is_(True))
    return list((await db.execute(stmt)).scalars().all())


async def get_card(db: AsyncSession, card_id: str) -> CardTemplate:
    card = await db.get(CardTemplate, card_id)
    if card is None:
        raise NotFoundError(f"Card {card_id} not found")
    return card


async def create_card(db: AsyncSession, data: dict) -> CardTemplate:
    values = {k: v for k, v in data.items() if k in CARD_COLUMNS}
    _check_card_values({"name": "", "title": "", **values})
    if "display_order" not in values:
        existing = await list_cards(db)
        values["display_order"] = (max((c.display_order for c in existing), default=-1) + 1)
    card = CardTemplate(**values)
    db.add(card)
    await db.commit()
    await db.refresh(card, attribute_names=["fields"])
    logger.info("Created card %s (%s)", card.name, card.type)
    return card


async def update_card(db: AsyncSession, card_id: str, data: dict) -> CardTemplate:
    card = await get_card(db, card_id)
    values = {k: v for k, v in data.items() if k in CARD_COLUMNS}
    _check_card_values(values)
    for key, value in values.items():
        setattr(card, key, value)
    await db.commit()
    await db.refresh(card)
    return card


async def delete_card(db: AsyncSession, card_id: str) -> None:
    card = await get_card(db, card_id)
    await db.delete(card)
    await db.commit()
    logger.info("Deleted card %s", card_id)


async def reorder_cards(db: AsyncSession, ordered_ids: Iterable[str]) -> list[CardTemplate]:
    """Persist a drag-and-drop result: cards take positions 0..n-1 in list order."""
    ordered_ids = list(ordered_ids)
    if len(set(ordered_ids)) != len(ordered_ids):
        raise ValidationFailed("Duplicate card ids in ordering")
    cards = {c.id: c for c in await list_cards(db)}
    missing = [cid for cid in ordered_ids if cid not in cards]
    if missing:
        raise NotFoundError("Unknown card ids in ordering", details=missing)
    for position, cid in enumerate(ordered_ids):
        cards[cid].display_order = position
    await db.commit()
    return await list_cards(db)


async def duplicate_card(db: AsyncSession, card_id: str) -> CardTemplate:
    source = await get_card(db, card_id)
    copy = CardTemplate(
        name=f"{source.name} (copy)",
        title=source.title,
        type=source.type,
        display_order=source.display_order + 1,
        is_active=False,
        config=dict(source.config or {}),
        styling=dict(source.styling or {}),
        completion_rules=source.completion_rules,
        reveal_timing=source.reveal_timing,
        reveal_next_conditions=source.reveal_next_conditions,
        reveal_conditions=list(source.reveal_conditions or []),
        visual_object_id=source.visual_object_id,
    )
    copy.fields = [
        CardField(**{k: getattr(f, k) for k in FIELD_COLUMNS}) for f in source.fields or []
    ]
    db.add(copy)
    await db.commit()
    await db.refresh(copy, attribute_names=["fields"])
    return copy


async def set_card_rules(db: AsyncSession, card_id: str, completion: dict, reveal: dict) -> CardTemplate:
    """Store rules authored in the reveal-rules editor in the two-axis shape."""
    card = await get_card(db, card_id)
    errors = validate_rules_payload(completion, reveal, [f.field_name for f in card.fields or []])
    if errors:
        raise ValidationFailed("Invalid reveal rules", details=errors)
    form_completion: dict[str, Any] = {"type": completion["type"]}
    if completion.get("required_field_names"):
        form_completion["required_field_names"] = list(completion["required_field_names"])
    card.completion_rules = {"form_completion": form_completion}
    timing: dict[str, Any] = {"timing": reveal["timing"]}
    if reveal["timing"] == "after_delay":
        timing["delay_seconds"] = reveal["delay_seconds"]
    card.reveal_timing = timing
    await db.commit()
    await db.refresh(card)
    return card


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------

async def _field(db: AsyncSession, card_id: str, field_id: str) -> CardField:
    f = await db.get(CardField, field_id)
    if f is None or f.card_id != card_id:
        raise NotFoundError(f"Field {field_id} not found on card {card_id}")
    return f


async def _name_taken(db: AsyncSession, card_id: str, field_name: str, exclude_id: Optional[str] = None) -> bool:
    stmt = select(CardField.id).where(CardField.card_id == card_id, CardField.field_name == field_name)
    if exclude_id:
        stmt = stmt.where(CardField.id != exclude_id)
    return (await db.execute(stmt)).first() is not None


async def add_field(db: AsyncSession, card_id: str, data: dict) -> CardField:
    card = await get_card(db, card_id)
    values = {k: v for k, v in data.items() if k in FIELD_COLUMNS}
    _check_field_values({"field_name": "", **values})
    if await _name_taken(db, card_id, values["field_name"]):
        raise ConflictError(f"Field '{values['field_name']}' already exists on this card")
    if "display_order" not in values:
        values["display_order"] = max((f.display_order for f in card.fields or []), default=-1) + 1
    values.setdefault("label", values["field_name"])
    f = CardField(card_id=card_id, **values)
    db.add(f)
    await db.commit()
    await db.refresh(card, attribute_names=["fields"])
    return f


async def update_field(db: AsyncSession, card_id: str, field_id: str, data: dict) -> CardField:
    f = await _field(db, card_id, field_id)
    values = {k: v for k, v in data.items() if k in FIELD_COLUMNS}
    _check_field_values(values)
    if "field_name" in values and await _name_taken(db, card_id, values["field_name"], exclude_id=field_id):
        raise ConflictError(f"Field '{values['field_name']}' already exists on this card")
    for key, value in values.items():
        setattr(f, key, value)
    await db.commit()
    await db.refresh(f)
    return f


async def delete_field(db: AsyncSession, card_id: str, field_id: str) -> None:
    f = await _field(db, card_id, field_id)
    await db.delete(f)
    await db.commit()


async def reorder_fields(db: AsyncSession, card_id: str, ordered_ids: Iterable[str]) -> list[CardField]:
    card = await get_card(db, card_id)
    by_id = {f.id: f for f in card.fields or []}
    ordered_ids = list(ordered_ids)
    missing = [fid for fid in ordered_ids if fid not in by_id]
    if missing:
        raise NotFoundError("Unknown field ids in ordering", details=missing)
    for position, fid in enumerate(ordered_ids):
        by_id[fid].display_order = position
    await db.commit()
    await db.refresh(card, attribute_names=["fields"])
    return list(card.fields)


async def cleanup_orphaned_fields(db: AsyncSession) -> int:
    """Delete fields whose card no longer exists; returns how many were removed."""
    card_ids = select(CardTemplate.id)
    result = await db.execute(
        delete(CardField)
        .where(CardField.card_id.not_in(card_ids))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    removed = result.rowcount or 0
    if removed:
        logger.info("Removed %d orphaned card fields", removed)
    return removed
