# energy_console/services/themes.py
"""Global theme storage, computed colours and per-card style overrides."""
from __future__ import annotations

import copy
import logging
import re
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.models import CardStyleOverride, CardTemplate, Theme
from energy_console.services.errors import ConflictError, NotFoundError, ValidationFailed

logger = logging.getLogger(__name__)

HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

DEFAULT_THEME_CORE: dict[str, Any] = {
    "primaryColor": "#0d9488",
    "secondaryColor": "#f59e0b",
    "fontFamily": "Inter, system-ui, sans-serif",
    "headingFontFamily": "Inter, system-ui, sans-serif",
    "fieldSettings": {
        "borderRadius": "md",
        "fieldStyle": "outlined",
        "fieldSpacing": "normal",
        "buttonStyle": "solid",
        "buttonRadius": "md",
    },
}
CORE_KEYS = ("primaryColor", "secondaryColor", "fontFamily", "headingFontFamily", "fieldSettings")


# ---------------------------------------------------------------------------
# Colour helpers
# ---------------------------------------------------------------------------

def _parse_hex(color: str) -> tuple[int, int, int]:
    match = HEX_RE.match((color or "").strip())
    if not match:
        raise ValidationFailed(f"Invalid hex colour '{color}'")
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def _to_hex(rgb: tuple[float, float, float]) -> str:
    return "#" + "".join(f"{max(0, min(255, round(c))):02x}" for c in rgb)


def lighten(color: str, amount: float) -> str:
    """Mix ``color`` towards white by ``amount`` (0..1)."""
    r, g, b = _parse_hex(color)
    return _to_hex(tuple(c + (255 - c) * amount for c in (r, g, b)))


def darken(color: str, amount: float) -> str:
    r, g, b = _parse_hex(color)
    return _to_hex(tuple(c * (1 - amount) for c in (r, g, b)))


def contrast_text(color: str) -> str:
    r, g, b = _parse_hex(color)
    luminance = (0.299 * r + 0.587 * g + 0.114 * b) / 255
    return "#111827" if luminance > 0.6 else "#ffffff"


def compute_theme_colors(core: dict) -> dict:
    primary = core.get("primaryColor") or DEFAULT_THEME_CORE["primaryColor"]
    secondary = core.get("secondaryColor") or DEFAULT_THEME_CORE["secondaryColor"]
    return {
        "primaryLight": lighten(primary, 0.2),
        "primaryDark": darken(primary, 0.2),
        "primaryContrast": contrast_text(primary),
        "secondaryLight": lighten(secondary, 0.2),
        "secondaryDark": darken(secondary, 0.2),
        "secondaryContrast": contrast_text(secondary),
        "primaryTint": lighten(primary, 0.9),
        "focusRing": lighten(primary, 0.5),
    }


_RADII = {"none": "0", "sm": "0.125rem", "md": "0.375rem", "lg": "0.5rem", "xl": "0.75rem", "full": "9999px"}


def theme_css_variables(theme_data: dict) -> str:
    """CSS custom properties used by the preview pane and the embedded calculator."""
    core = merge_core(DEFAULT_THEME_CORE, theme_data or {})
    computed = compute_theme_colors(core)
    fields = core.get("fieldSettings") or {}
    lines = [
        f"--ec-primary: {core['primaryColor']};",
        f"--ec-secondary: {core['secondaryColor']};",
        f"--ec-font-family: {core['fontFamily']};",
        f"--ec-heading-font-family: {core['headingFontFamily']};",
        f"--ec-field-radius: {_RADII.get(fields.get('borderRadius'), _RADII['md'])};",
        f"--ec-button-radius: {_RADII.get(fields.get('buttonRadius'), _RADII['md'])};",
    ]
    for key, value in computed.items():
        css_key = re.sub(r"(?<!^)(?=[A-Z])", "-", key).lower()
        lines.append(f"--ec-{css_key}: {value};")
    return ":root {\n  " + "\n  ".join(lines) + "\n}"


# ---------------------------------------------------------------------------
# Theme records
# ---------------------------------------------------------------------------

def merge_core(base: dict, updates: dict) -> dict:
    merged = {k: copy.deepcopy(base.get(k)) for k in CORE_KEYS}
    for key in ("primaryColor", "secondaryColor", "fontFamily", "headingFontFamily"):
        if updates.get(key):
            merged[key] = updates[key]
    if updates.get("fieldSettings"):
        merged["fieldSettings"] = {**(merged.get("fieldSettings") or {}), **updates["fieldSettings"]}
    for key in ("primaryColor", "secondaryColor"):
        _parse_hex(merged[key])
    return merged


def build_theme_data(core: dict) -> dict:
    merged = merge_core(DEFAULT_THEME_CORE, core)
    return {**merged, "computed": compute_theme_colors(merged)}


def default_theme() -> dict:
    return {
        "id": "default",
        "name": "Default Theme",
        "description": "Clean and professional default theme",
        "is_active": True,
        "is_default": True,
        "theme_data": build_theme_data(DEFAULT_THEME_CORE),
    }


def theme_to_dict(theme: Theme) -> dict:
    return {
        "id": theme.id,
        "name": theme.name,
        "description": theme.description,
        "is_active": bool(theme.is_active),
        "is_default": bool(theme.is_default),
        "theme_data": theme.theme_data or {},
        "created_at": theme.created_at.isoformat() if theme.created_at else None,
        "updated_at": theme.updated_at.isoformat() if theme.updated_at else None,
    }


async def get_active_theme(db: AsyncSession) -> dict:
    theme = (
        await db.execute(select(Theme).where(Theme.is_active.is_(True)).order_by(Theme.updated_at.desc()))
    ).scalars().first()
    if theme is None:
        logger.warning("No active theme found, using default")
        return default_theme()
    return theme_to_dict(theme)


async def list_themes(db: AsyncSession) -> list[Theme]:
    rows = await db.execute(select(Theme).order_by(Theme.is_default.desc(), Theme.created_at.desc()))
    return list(rows.scalars().all())


async def get_theme(db: AsyncSession, theme_id: str) -> Theme:
    theme = await db.get(Theme, theme_id)
    if theme is None:
        raise NotFoundError(f"Theme not found: {theme_id}")
    return theme


async def create_theme(db: AsyncSession, core: dict, name: str, description: Optional[str] = None) -> Theme:
    if not (name or "").strip():
        raise ValidationFailed("Theme name is required")
    theme = Theme(
        name=name.strip(),
        description=description,
        theme_data=build_theme_data(core),
        is_active=False,
        is_default=False,
    )
    db.add(theme)
    await db.commit()
    await db.refresh(theme)
    return theme


async def update_theme(db: AsyncSession, theme_id: str, updates: dict) -> Theme:
    theme = await get_theme(db, theme_id)
    merged = merge_core(theme.theme_data or DEFAULT_THEME_CORE, updates)
    theme.theme_data = {**merged, "computed": compute_theme_colors(merged)}
    if updates.get("name"):
        theme.name = updates["name"]
    if "description" in updates:
        theme.description = updates["description"]
    await db.commit()
    await db.refresh(theme)
    return theme


async def activate_theme(db: AsyncSession, theme_id: str) -> Theme:
    theme = await get_theme(db, theme_id)
    await db.execute(update(Theme).where(Theme.id != theme_id).values(is_active=False))
    theme.is_active = True
    await db.commit()
    await db.refresh(theme)
    logger.info("Activated theme %s", theme.name)
    return theme


async def delete_theme(db: AsyncSession, theme_id: str) -> None:
    theme = await get_theme(db, theme_id)
    if theme.is_active:
        raise ConflictError("Cannot delete the active theme")
    if theme.is_default:
        raise ConflictError("Cannot delete the default theme")
    await db.delete(theme)
    await db.commit()


async def ensure_default_theme(db: AsyncSession) -> Theme:
    """Seed the built-in theme as the default (and active) one on an empty install."""
    existing = (await db.execute(select(Theme).where(Theme.is_default.is_(True)))).scalars().first()
    if existing:
        return existing
    has_active = (await db.execute(select(Theme.id).where(Theme.is_active.is_(True)))).first() is not None
    seed = default_theme()
    theme = Theme(
        name=seed["name"],
        description=seed["description"],
        theme_data=seed["theme_data"],
        is_active=not has_active,
        is_default=True,
    )
    db.add(theme)
    await db.commit()
    await db.refresh(theme)
    logger.info("Seeded default theme")
    return theme


# ---------------------------------------------------------------------------
# Card style overrides
# ---------------------------------------------------------------------------

async def get_card_overrides(db: AsyncSession, theme_id: Optional[str] = None) -> dict[str, dict]:
    stmt = select(CardStyleOverride)
    if theme_id:
        stmt = stmt.where(CardStyleOverride.theme_id == theme_id)
    rows = (await db.execute(stmt)).scalars().all()
    return {row.card_id: row.style_overrides or {} for row in rows}


async def set_card_override(db: AsyncSession, card_id: str, theme_id: str, overrides: dict) -> CardStyleOverride:
    if await db.get(CardTemplate, card_id) is None:
        raise NotFoundError(f"Card {card_id} not found")
    await get_theme(db, theme_id)
    row = (
        await db.execute(
            select(CardStyleOverride).where(
                CardStyleOverride.card_id == card_id, CardStyleOverride.theme_id == theme_id
            )
        )
    ).scalar_one_or_none()
    style = {"cardId": card_id, **(overrides or {})}
    if row is None:
        row = CardStyleOverride(card_id=card_id, theme_id=theme_id, style_overrides=style)
        db.add(row)
    else:
        row.style_overrides = style
    await db.commit()
    await db.refresh(row)
    return row


async def remove_card_override(db: AsyncSession, card_id: str, theme_id: str) -> bool:
    row = (
        await db.execute(
            select(CardStyleOverride).where(
                CardStyleOverride.card_id == card_id, CardStyleOverride.theme_id == theme_id
            )
        )
    ).scalar_one_or_none()
    if row is None:
        return False
    await db.delete(row)
    await db.commit()
    return True
