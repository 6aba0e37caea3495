# energy_console/services/leads.py
"""Lead intake from the public calculator and the admin lead table."""
from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.models import Lead, LeadStatus
from energy_console.services.calculations import CalculationInputs, calculate_heat_pump_savings
from energy_console.services.errors import NotFoundError, ValidationFailed
from energy_console.services.metrics import NormalizedLead, compute_metrics
from energy_console.services.ratelimit import RateLimiter
from energy_console.services.values import is_blank, to_float, to_int
from energy_console.settings.config import settings

logger = logging.getLogger(__name__)

lead_rate_limiter = RateLimiter(settings.LEAD_RATE_LIMIT_PER_MINUTE, 60)

LEAD_STATUSES = tuple(s.value for s in LeadStatus)
# body keys that land in fixed columns rather than form_data
NAME_KEYS = {"first_name", "last_name", "nimi"}
CSV_FIXED_COLUMNS = [
    "id", "created_at", "status", "first_name", "last_name", "email", "phone",
    "city", "street_address", "annual_savings", "payback_period", "notes",
]


@dataclass(slots=True)
class RequestMeta:
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    source_page: str = ""


def _finite(value):
    # JSON columns cannot hold inf/nan
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def split_name(body: dict) -> tuple[str, str]:
    nimi = str(body.get("nimi") or "").strip()
    parts = nimi.split(" ") if nimi else []
    first = str(body.get("first_name") or "").strip() or (parts[0] if parts else "")
    last = str(body.get("last_name") or "").strip() or " ".join(parts[1:])
    return first, last


def calculation_for(body: dict) -> dict:
    inputs = CalculationInputs(
        square_meters=to_float(body.get("neliot"), 0.0) or 0.0,
        ceiling_height=to_float(body.get("huonekorkeus"), 2.5) or 2.5,
        residents=to_int(body.get("henkilomaara"), 2),
        current_heating_cost=to_float(body.get("vesikiertoinen"), 0.0) or 0.0,
        current_heating_type=str(body.get("lammitysmuoto") or "other"),
    )
    return {k: _finite(v) for k, v in calculate_heat_pump_savings(inputs).as_dict().items()}


def build_lead(body: dict, meta: Optional[RequestMeta] = None) -> Lead:
    """Map a submission body onto a Lead row; nothing is persisted here."""
    if is_blank(body.get("neliot")) or is_blank(body.get("sahkoposti")):
        raise ValidationFailed("Missing required fields", details=["neliot", "sahkoposti"])

    meta = meta or RequestMeta()
    results = calculation_for(body)
    first, last = split_name(body)

    form_data = {
        "sahkoposti": body.get("sahkoposti") or "",
        "neliot": to_float(body.get("neliot"), 0.0),
        "huonekorkeus": to_float(body.get("huonekorkeus"), 2.5),
        "henkilomaara": to_int(body.get("henkilomaara"), 2),
        "lammitysmuoto": body.get("lammitysmuoto") or "",
        "vesikiertoinen": to_float(body.get("vesikiertoinen"), 0.0),
        "source_page": meta.source_page,
        "consent_timestamp": datetime.now(timezone.utc).isoformat(),
    }
    for key, value in body.items():
        if key not in NAME_KEYS and key not in form_data:
            form_data[key] = value
    for key, value in results.items():
        form_data.setdefault(key, value)

    try:
        results["metrics"] = compute_metrics(NormalizedLead.from_form_data(form_data))
    except (TypeError, ValueError, ZeroDivisionError) as exc:
        logger.info("Metrics skipped for submission: %s", exc)

    return Lead(
        first_name=first,
        last_name=last,
        email=str(body.get("sahkoposti") or "").strip(),
        phone=str(body.get("puhelinnumero") or ""),
        city=body.get("paikkakunta") or None,
        street_address=body.get("osoite") or None,
        status=LeadStatus.new.value,
        form_data=form_data,
        calculation_results=results,
        session_id=body.get("session_id") or None,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        source_page=meta.source_page or None,
        gdpr_consent=bool(body.get("gdpr_consent")),
        marketing_consent=bool(body.get("marketing_consent")),
    )


async def submit_lead(db: AsyncSession, body: dict, meta: Optional[RequestMeta] = None) -> Lead:
    meta = meta or RequestMeta()
    lead_rate_limiter.check(meta.ip_address)
    lead = build_lead(body, meta)
    db.add(lead)
    await db.commit()
    await db.refresh(lead)
    logger.info("Lead %s stored (ip=%s)", lead.id, meta.ip_address)
    return lead


def lead_to_dict(lead: Lead) -> dict:
    return {
        "id": lead.id,
        "first_name": lead.first_name,
        "last_name": lead.last_name,
        "full_name": lead.full_name,
        "email": lead.email,
        "phone": lead.phone,
        "city": lead.city,
        "street_address": lead.street_address,
        "status": lead.status,
        "notes": lead.notes,
        "form_data": lead.form_data or {},
        "calculation_results": lead.calculation_results or {},
        "session_id": lead.session_id,
        "pdf_url": lead.pdf_url,
        "gdpr_consent": bool(lead.gdpr_consent),
        "marketing_consent": bool(lead.marketing_consent),
        "created_at": lead.created_at.isoformat() if lead.created_at else None,
        "updated_at": lead.updated_at.isoformat() if lead.updated_at else None,
    }


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

def _filtered(stmt, search: Optional[str], status: Optional[str]):
    if status:
        if status not in LEAD_STATUSES:
            raise ValidationFailed(f"Unknown status '{status}'")
        stmt = stmt.where(Lead.status == status)
    if search and search.strip():
        like = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Lead.first_name.ilike(like),
                Lead.last_name.ilike(like),
                Lead.email.ilike(like),
                Lead.phone.ilike(like),
                Lead.city.ilike(like),
            )
        )
    return stmt


async def list_leads(
    db: AsyncSession,
    *,
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 25,
) -> dict:
    page = max(1, page)
    page_size = max(1, min(page_size, 200))
    total = (await db.execute(_filtered(select(func.count(Lead.id)), search, status))).scalar_one()
    stmt = (
        _filtered(select(Lead), search, status)
        .order_by(Lead.created_at.desc(), Lead.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = (await db.execute(stmt)).scalars().all()
    return {
        "items": list(rows),
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": max(1, math.ceil(total / page_size)),
    }


async def get_lead(db: AsyncSession, lead_id: str) -> Lead:
    lead = await db.get(Lead, lead_id)
    if lead is None:
        raise NotFoundError(f"Lead {lead_id} not found")
    return lead


async def update_lead(db: AsyncSession, lead_id: str, *, status: Optional[str] = None,
                      notes: Optional[str] = None) -> Lead:
    lead = await get_lead(db, lead_id)
    if status is not None:
        if status not in LEAD_STATUSES:
            raise ValidationFailed(f"Unknown status '{status}'")
        lead.status = status
    if notes is not None:
        lead.notes = notes
    await db.commit()
    await db.refresh(lead)
    return lead


async def bulk_update_status(db: AsyncSession, ids: Iterable[str], status: str) -> int:
    if status not in LEAD_STATUSES:
        raise ValidationFailed(f"Unknown status '{status}'")
    ids = list(ids)
    if not ids:
        return 0
    result = await db.execute(
        update(Lead).where(Lead.id.in_(ids)).values(status=status).execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Bulk status %s applied to %d leads", status, result.rowcount or 0)
    return result.rowcount or 0


async def bulk_delete(db: AsyncSession, ids: Iterable[str]) -> int:
    ids = list(ids)
    if not ids:
        return 0
    result = await db.execute(delete(Lead).where(Lead.id.in_(ids)).execution_options(synchronize_session=False))
    await db.commit()
    logger.info("Deleted %d leads", result.rowcount or 0)
    return result.rowcount or 0


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return ", ".join(f"{k}={v}" for k, v in value.items()) if isinstance(value, dict) else ", ".join(map(str, value))
    return str(value)


def leads_to_csv(leads: list[Lead]) -> str:
    """One row per lead; every form_data key becomes its own column."""
    dynamic: list[str] = []
    for lead in leads:
        for key in (lead.form_data or {}):
            if key not in dynamic and key not in CSV_FIXED_COLUMNS:
                dynamic.append(key)

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_FIXED_COLUMNS + dynamic)
    for lead in leads:
        results = lead.calculation_results or {}
        form = lead.form_data or {}
        fixed = {
            "id": lead.id,
            "created_at": lead.created_at.isoformat() if lead.created_at else "",
            "status": lead.status,
            "first_name": lead.first_name,
            "last_name": lead.last_name,
            "email": lead.email,
            "phone": lead.phone,
            "city": lead.city,
            "street_address": lead.street_address,
            "annual_savings": results.get("annual_savings"),
            "payback_period": results.get("payback_period"),
            "notes": lead.notes,
        }
        writer.writerow([_cell(fixed[c]) for c in CSV_FIXED_COLUMNS] + [_cell(form.get(k)) for k in dynamic])
    return buf.getvalue()


async def export_leads_csv(db: AsyncSession, *, search: Optional[str] = None, status: Optional[str] = None) -> str:
    stmt = _filtered(select(Lead), search, status).order_by(Lead.created_at.desc())
    leads = list((await db.execute(stmt)).scalars().all())
    return leads_to_csv(leads)
