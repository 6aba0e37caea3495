# energy_console/services/shortcodes.py
"""Content shortcodes (``{{name}}``) and calculator display shortcodes (``[calc:name]``)."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.models import Shortcode
from energy_console.services.errors import ConflictError, NotFoundError, ValidationFailed
from energy_console.services.formulas import execute_formula_with_fields, find_formula, get_cached_formulas

logger = logging.getLogger(__name__)

SHORTCODE_CATEGORIES = ("customer", "results", "company", "system")
DISPLAY_RE = re.compile(r"\[(calc|lookup):([^\]]+)\]")
DISPLAY_NAME_RE = re.compile(r"^[a-zA-Z0-9\-\s]+$")
MAX_DISPLAY_NAME = 50

# formulas saved before units existed
_UNIT_BY_NAME = (
    (("energiantarve", "kwh"), "kW"),
    (("öljyn menekki",), "L/vuosi"),
    (("kaasun menekki",), "MWh/vuosi"),
    (("puun menekki",), "motti/vuosi"),
)


@dataclass(slots=True)
class DisplayShortcode:
    original: str
    type: str  # calc | lookup
    name: str


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

SHORTCODE_COLUMNS = {"name", "description", "example", "category", "replacement_value", "is_active"}


def shortcode_to_dict(s: Shortcode) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "description": s.description,
        "example": s.example,
        "category": s.category,
        "replacement_value": s.replacement_value,
        "is_active": bool(s.is_active),
    }


def _check(values: dict) -> None:
    if "category" in values and values["category"] not in SHORTCODE_CATEGORIES:
        raise ValidationFailed(f"Unknown shortcode category '{values['category']}'")
    if "name" in values and not re.fullmatch(r"[\w.\-]+", values["name"] or ""):
        raise ValidationFailed("Shortcode names may contain letters, digits, dots, dashes and underscores")


async def list_shortcodes(db: AsyncSession, category: Optional[str] = None) -> list[Shortcode]:
    stmt = select(Shortcode).where(Shortcode.is_active.is_(True)).order_by(Shortcode.category, Shortcode.name)
    if category:
        stmt = stmt.where(Shortcode.category == category)
    return list((await db.execute(stmt)).scalars().all())


async def get_shortcode(db: AsyncSession, shortcode_id: str) -> Shortcode:
    row = await db.get(Shortcode, shortcode_id)
    if row is None or not row.is_active:
        raise NotFoundError(f"Shortcode {shortcode_id} not found")
    return row


async def create_shortcode(db: AsyncSession, data: dict) -> Shortcode:
    values = {k: v for k, v in data.items() if k in SHORTCODE_COLUMNS}
    _check({"name": "", **values})
    exists = (await db.execute(select(Shortcode).where(Shortcode.name == values["name"]))).scalar_one_or_none()
    if exists is not None:
        if exists.is_active:
            raise ConflictError(f"Shortcode '{values['name']}' already exists")
        # reuse a soft-deleted row so the unique name stays free
        for key, value in values.items():
            setattr(exists, key, value)
        exists.is_active = True
        await db.commit()
        await db.refresh(exists)
        return exists
    row = Shortcode(**values)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def update_shortcode(db: AsyncSession, shortcode_id: str, data: dict) -> Shortcode:
    row = await get_shortcode(db, shortcode_id)
    values = {k: v for k, v in data.items() if k in SHORTCODE_COLUMNS}
    _check(values)
    if values.get("name") and values["name"] != row.name:
        taken = (await db.execute(select(Shortcode.id).where(Shortcode.name == values["name"]))).first()
        if taken:
            raise ConflictError(f"Shortcode '{values['name']}' already exists")
    for key, value in values.items():
        setattr(row, key, value)
    await db.commit()
    await db.refresh(row)
    return row


async def delete_shortcode(db: AsyncSession, shortcode_id: str) -> None:
    """Soft delete."""
    row = await get_shortcode(db, shortcode_id)
    row.is_active = False
    await db.commit()


# ---------------------------------------------------------------------------
# {{name}} content shortcodes
# ---------------------------------------------------------------------------

def _lookup(context: dict, name: str) -> Any:
    if name in context and not isinstance(context[name], dict):
        return context[name]
    node: Any = context
    for part in name.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def apply_shortcodes(content: str, shortcodes: list[Shortcode], context: dict) -> str:
    """Replace every ``{{name}}`` of a known shortcode; unknown ones are left in place."""
    out = content or ""
    for sc in shortcodes:
        value = _lookup(context or {}, sc.name)
        if value in (None, ""):
            value = sc.replacement_value or ""
        out = out.replace("{{" + sc.name + "}}", str(value))
    return out


async def process_shortcodes(db: AsyncSession, content: str, context: dict) -> str:
    return apply_shortcodes(content, await list_shortcodes(db), context)


# ---------------------------------------------------------------------------
# [calc:name] display content
# ---------------------------------------------------------------------------

def parse_display_content(content: str) -> list[DisplayShortcode]:
    return [
        DisplayShortcode(original=m.group(0), type=m.group(1), name=m.group(2).strip())
        for m in DISPLAY_RE.finditer(content or "")
    ]


def format_fi_number(value: float) -> str:
    """Number the way fi-FI ``toLocaleString`` shows it: grouped, decimal comma, at most 3 decimals."""
    text = f"{value:,.3f}".rstrip("0").rstrip(".")
    return text.replace(",", " ").replace(".", ",")


def unit_for(name: str, unit: Optional[str]) -> str:
    if unit:
        return unit
    lowered = (name or "").lower()
    for needles, fallback in _UNIT_BY_NAME:
        if all(n in lowered for n in needles):
            return fallback
    return ""


async def process_display_content(db: AsyncSession, content: str, form_data: Optional[dict] = None) -> str:
    """Render ``[calc:name]`` shortcodes; failures render inline as ``[Error: ...]``."""
    shortcodes = parse_display_content(content)
    if not shortcodes:
        return content
    formulas = await get_cached_formulas(db)
    out = content
    for sc in shortcodes:
        if sc.type == "lookup":
            out = out.replace(sc.original, f"[Error: Lookup shortcodes are not supported ('{sc.name}')]", 1)
            continue
        formula = find_formula(formulas, sc.name, loose=True)
        if formula is None:
            out = out.replace(sc.original, f"[Error: Formula '{sc.name}' not found]", 1)
            continue
        result = await execute_formula_with_fields(db, formula.formula_text, form_data or {}, formula_name=formula.name)
        if result.success and result.result is not None:
            unit = unit_for(formula.name, formula.unit)
            rendered = format_fi_number(result.result)
            out = out.replace(sc.original, f"{rendered} {unit}" if unit else rendered, 1)
        else:
            out = out.replace(sc.original, f"[Error: {result.error or 'Calculation failed'}]", 1)
    return out


def validate_shortcode_syntax(content: str) -> dict:
    errors: list[str] = []
    suggestions: list[str] = []
    for sc in parse_display_content(content):
        if not DISPLAY_NAME_RE.match(sc.name):
            errors.append(f"Invalid characters in formula name: {sc.name}")
            suggestions.append("Use only letters, numbers, hyphens, and spaces in formula names")
        if len(sc.name) > MAX_DISPLAY_NAME:
            errors.append(f"Formula name too long: {sc.name}")
            suggestions.append(f"Keep formula names under {MAX_DISPLAY_NAME} characters")
    return {"is_valid": not errors, "errors": errors, "suggestions": suggestions}


async def available_shortcodes(db: AsyncSession) -> list[dict]:
    formulas = await get_cached_formulas(db)
    return [
        {
            "name": f.name,
            "shortcode": "[calc:" + re.sub(r"\s+", "-", f.name.lower()) + "]",
            "description": f.description or "No description available",
            "category": f.formula_type or "custom",
            "unit": f.unit,
        }
        for f in formulas
        if f.is_active
    ]
