# energy_console/services/email_templates.py
"""Editable e-mail templates rendered through the content shortcodes."""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.models import EmailTemplate, Lead
from energy_console.services.calculations import format_currency
from energy_console.services.errors import ConflictError, NotFoundError, ValidationFailed
from energy_console.services.shortcodes import apply_shortcodes, list_shortcodes
from energy_console.services.values import to_float
from energy_console.settings.config import settings

logger = logging.getLogger(__name__)

EMAIL_CATEGORIES = ("results", "sales-notification", "welcome", "follow-up", "other")
EMAIL_TEMPLATE_COLUMNS = {"name", "subject", "content", "category", "is_active"}


def email_template_to_dict(t: EmailTemplate) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "subject": t.subject,
        "content": t.content,
        "category": t.category,
        "version": t.version,
        "is_active": bool(t.is_active),
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


def lead_shortcode_context(lead: Optional[Lead]) -> dict:
    """Context for ``{{category.field}}`` lookups in e-mail bodies."""
    form_data = dict(getattr(lead, "form_data", None) or {})
    results = dict(getattr(lead, "calculation_results", None) or {})
    formatted = {
        key: format_currency(to_float(value))
        for key, value in results.items()
        if key in ("annual_savings", "five_year_savings", "ten_year_savings") and to_float(value) is not None
    }
    customer = {
        "first_name": getattr(lead, "first_name", "") or "",
        "last_name": getattr(lead, "last_name", "") or "",
        "name": getattr(lead, "full_name", "") if lead is not None else "",
        "email": getattr(lead, "email", "") or "",
        "phone": getattr(lead, "phone", "") or "",
        "city": getattr(lead, "city", "") or "",
        "address": getattr(lead, "street_address", "") or "",
    }
    return {
        **form_data,
        "customer": customer,
        "results": {**results, **{f"{k}_formatted": v for k, v in formatted.items()}},
        "company": {"name": settings.COMPANY_NAME, "url": settings.BASE_URL},
        "system": {"base_url": settings.BASE_URL},
    }


def _check(values: dict) -> None:
    if "category" in values and values["category"] not in EMAIL_CATEGORIES:
        raise ValidationFailed(f"Unknown e-mail category '{values['category']}'")
    for key in ("name", "subject", "content"):
        if key in values and not (values[key] or "").strip():
            raise ValidationFailed(f"Template {key} is required")


async def list_email_templates(db: AsyncSession, category: Optional[str] = None) -> list[EmailTemplate]:
    stmt = select(EmailTemplate).where(EmailTemplate.is_active.is_(True)).order_by(EmailTemplate.created_at.desc())
    if category:
        stmt = stmt.where(EmailTemplate.category == category)
    return list((await db.execute(stmt)).scalars().all())


async def get_email_template(db: AsyncSession, template_id: str) -> EmailTemplate:
    t = await db.get(EmailTemplate, template_id)
    if t is None or not t.is_active:
        raise NotFoundError(f"E-mail template {template_id} not found")
    return t


async def create_email_template(db: AsyncSession, data: dict) -> EmailTemplate:
    values = {k: v for k, v in data.items() if k in EMAIL_TEMPLATE_COLUMNS}
    _check({"name": "", "subject": "", "content": "", **values})
    if (await db.execute(select(EmailTemplate.id).where(EmailTemplate.name == values["name"]))).first():
        raise ConflictError(f"E-mail template '{values['name']}' already exists")
    t = EmailTemplate(**values)
    db.add(t)
    await db.commit()
    await db.refresh(t)
    return t


async def update_email_template(db: AsyncSession, template_id: str, data: dict) -> EmailTemplate:
    t = await get_email_template(db, template_id)
    values = {k: v for k, v in data.items() if k in EMAIL_TEMPLATE_COLUMNS}
    _check(values)
    if values.get("name") and values["name"] != t.name:
        if (await db.execute(select(EmailTemplate.id).where(EmailTemplate.name == values["name"]))).first():
            raise ConflictError(f"E-mail template '{values['name']}' already exists")
    body_changed = any(k in values and values[k] != getattr(t, k) for k in ("subject", "content"))
    for key, value in values.items():
        setattr(t, key, value)
    if body_changed:
        t.version = (t.version or 1) + 1
    await db.commit()
    await db.refresh(t)
    return t


async def delete_email_template(db: AsyncSession, template_id: str) -> None:
    """Soft delete."""
    t = await get_email_template(db, template_id)
    t.is_active = False
    await db.commit()


async def render_email_template(db: AsyncSession, template: EmailTemplate, context: dict) -> tuple[str, str]:
    """Subject and body with shortcodes filled in."""
    shortcodes = await list_shortcodes(db)
    return (
        apply_shortcodes(template.subject, shortcodes, context),
        apply_shortcodes(template.content, shortcodes, context),
    )


async def template_for_category(db: AsyncSession, category: str) -> Optional[EmailTemplate]:
    templates = await list_email_templates(db, category)
    return templates[0] if templates else None
