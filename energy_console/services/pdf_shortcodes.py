# energy_console/services/pdf_shortcodes.py
"""Database-driven ``{{code}}`` placeholders for the lead report template.

Each definition says where its value comes from (a lead field, a formula over
lead data, a static string or a built-in special function) and how to format
it. Rendering the PDF itself happens elsewhere; this module only fills text.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.models import Lead, PdfShortcode
from energy_console.services.errors import ConflictError, NotFoundError, ValidationFailed
from energy_console.services.formulas import FormulaError, evaluate_expression
from energy_console.services.values import to_float

logger = logging.getLogger(__name__)

SOURCE_TYPES = ("field", "formula", "static", "special")
FORMAT_TYPES = ("text", "number", "currency", "percentage", "date")
SPECIAL_FUNCTIONS = (
    "current_date", "current_time", "calculation_number", "translate_heating_type",
    "efficiency_rating", "full_name", "full_address",
)
PLACEHOLDER_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
NBSP = "\u00a0"

HEATING_TYPE_FI = {
    "Oil": "Öljylämmitys",
    "Electric": "Sähkölämmitys",
    "District": "Kaukolämpö",
    "Other": "Muu",
}
FI_MONTHS = (
    "tammikuuta", "helmikuuta", "maaliskuuta", "huhtikuuta", "toukokuuta", "kesäkuuta",
    "heinäkuuta", "elokuuta", "syyskuuta", "lokakuuta", "marraskuuta", "joulukuuta",
)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def fi_number(value: float, min_decimals: int = 0, max_decimals: int = 2) -> str:
    text = f"{value:,.{max_decimals}f}"
    if max_decimals > min_decimals and "." in text:
        whole, frac = text.split(".")
        frac = frac.rstrip("0")
        if len(frac) < min_decimals:
            frac = frac.ljust(min_decimals, "0")
        text = f"{whole}.{frac}" if frac else whole
    # fi-FI uses a minus sign, not a hyphen
    return text.replace(",", NBSP).replace(".", ",").replace("-", "−")


def fi_date(value: date, long: bool = False) -> str:
    if long:
        return f"{value.day}. {FI_MONTHS[value.month - 1]} {value.year}"
    return f"{value.day}.{value.month}.{value.year}"


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def format_value(value: Any, format_type: Optional[str], options: Optional[dict] = None) -> str:
    if value is None:
        return ""
    opts = options or {}

    if format_type in ("currency", "number", "percentage"):
        number = to_float(value)
        if number is None:
            return str(value)
        if format_type == "currency":
            decimals = opts.get("decimals", 0)
            return f"{fi_number(number, decimals, decimals)}{NBSP}€"
        if format_type == "percentage":
            decimals = opts.get("decimals", 1)
            return f"{fi_number(number, decimals, decimals)} %"
        text = fi_number(number, opts.get("decimals", 0), opts.get("decimals", 2))
        return f"{opts.get('prefix', '')}{text}{opts.get('suffix', '')}"

    if format_type == "date":
        parsed = _parse_date(value)
        if parsed is None:
            return str(value)
        if opts.get("format") == "iso":
            return parsed.isoformat()
        return fi_date(parsed, long=opts.get("format") == "long")

    return f"{opts.get('prefix', '')}{value}{opts.get('suffix', '')}"


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------

def lead_context(lead: Lead) -> dict:
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
        "created_at": lead.created_at,
        "form_data": dict(lead.form_data or {}),
        "calculation_results": dict(lead.calculation_results or {}),
    }


class PdfShortcodeProcessor:
    def __init__(self, lead: Lead | dict, custom_values: Optional[dict] = None,
                 shortcodes: Optional[list[PdfShortcode]] = None):
        self.lead = lead if isinstance(lead, dict) else lead_context(lead)
        self.custom_values = custom_values or {}
        self.shortcodes = shortcodes
        self._cache: dict[str, Any] = {}

    async def load(self, db: AsyncSession) -> None:
        self.shortcodes = await list_pdf_shortcodes(db, active_only=True)
        logger.debug("Loaded %d active PDF shortcodes", len(self.shortcodes))

    async def process(self, db: AsyncSession, template: str) -> str:
        if self.shortcodes is None:
            await self.load(db)
        return self.render(template)

    def render(self, template: str) -> str:
        out = template or ""
        for sc in self.shortcodes or []:
            if sc.code not in out:
                continue
            out = out.replace(sc.code, format_value(self.resolve(sc), sc.format_type, sc.format_options))
        return out

    def resolve(self, sc: PdfShortcode) -> Any:
        if sc.code in self._cache:
            return self._cache[sc.code]
        try:
            if sc.source_type == "field":
                value = self.field_value(sc.source_value)
            elif sc.source_type == "formula":
                value = self.formula_value(sc.source_value)
            elif sc.source_type == "static":
                value = sc.source_value
            elif sc.source_type == "special":
                value = self.special_value(sc.source_value)
            else:
                value = None
        except FormulaError as exc:
            logger.info("PDF shortcode %s formula failed: %s", sc.code, exc.message)
            value = None
        if value is None or value == "":
            value = sc.fallback_value or ""
        self._cache[sc.code] = value
        return value

    def field_value(self, path: str) -> Any:
        if path in self.custom_values:
            return self.custom_values[path]
        value = _dig(self.lead, path)
        if value is None:
            for bucket in ("form_data", "calculation_results"):
                value = _dig(self.lead.get(bucket) or {}, path)
                if value is not None:
                    break
        return value

    def formula_value(self, expression: str) -> float:
        scope: dict[str, Any] = {}
        scope.update(self.lead.get("form_data") or {})
        scope.update(self.lead.get("calculation_results") or {})
        scope.update({k: v for k, v in self.lead.items() if not isinstance(v, dict)})
        scope.update(self.custom_values)
        return evaluate_expression(expression, scope)

    def special_value(self, name: str) -> Any:
        now = datetime.now()
        form_data = self.lead.get("form_data") or {}
        if name == "current_date":
            return fi_date(now.date())
        if name == "current_time":
            return now.strftime("%H.%M.%S")
        if name == "calculation_number":
            id_part = (str(self.lead.get("id") or "")[:6] or "000001").upper()
            return f"{now.year}-{id_part}"
        if name == "translate_heating_type":
            heating = str(form_data.get("lammitysmuoto") or "")
            return HEATING_TYPE_FI.get(heating, heating)
        if name == "efficiency_rating":
            return efficiency_rating(form_data, self.lead.get("calculation_results") or {})
        if name == "full_name":
            return self.lead.get("full_name") or ""
        if name == "full_address":
            return ", ".join(p for p in (self.lead.get("street_address"), self.lead.get("city")) if p)
        logger.warning("Unknown special function: %s", name)
        return ""


def _dig(data: Any, path: str) -> Any:
    node = data
    for part in path.split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        else:
            return None
    return node


def efficiency_rating(form_data: dict, results: dict) -> str:
    base = to_float(form_data.get("vesikiertoinen"))
    savings = to_float(results.get("annual_savings"), 0.0) or 0.0
    pct = savings / base * 100 if base else 0
    for threshold, grade in ((70, "A+"), (60, "A"), (50, "B"), (40, "C"), (30, "D")):
        if pct >= threshold:
            return grade
    return "E"


def validate_pdf_template(template: str, known_codes: Iterable[str]) -> dict:
    """Report ``{{...}}`` placeholders in a template that have no definition."""
    known = set(known_codes)
    used = [m.group(0) for m in PLACEHOLDER_RE.finditer(template or "")]
    normalized = {u: "{{" + PLACEHOLDER_RE.match(u).group(1) + "}}" for u in used}
    unknown = sorted({n for n in normalized.values() if n not in known})
    return {"is_valid": not unknown, "used": sorted(set(normalized.values())), "unknown": unknown}


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

PDF_SHORTCODE_COLUMNS = {
    "code", "name", "description", "category", "source_type", "source_value",
    "format_type", "format_options", "fallback_value", "is_active",
}


def normalize_code(code: str) -> str:
    inner = (code or "").strip().strip("{}").strip()
    if not re.fullmatch(r"[\w.\-]+", inner):
        raise ValidationFailed(f"Invalid shortcode code '{code}'")
    return "{{" + inner + "}}"


def pdf_shortcode_to_dict(sc: PdfShortcode) -> dict:
    return {
        "id": sc.id,
        "code": sc.code,
        "name": sc.name,
        "description": sc.description,
        "category": sc.category,
        "source_type": sc.source_type,
        "source_value": sc.source_value,
        "format_type": sc.format_type,
        "format_options": sc.format_options or {},
        "fallback_value": sc.fallback_value,
        "is_active": bool(sc.is_active),
    }


def _check(values: dict) -> None:
    if "source_type" in values and values["source_type"] not in SOURCE_TYPES:
        raise ValidationFailed(f"Unknown source type '{values['source_type']}'")
    if values.get("format_type") and values["format_type"] not in FORMAT_TYPES:
        raise ValidationFailed(f"Unknown format type '{values['format_type']}'")
    if values.get("source_type") == "special" and values.get("source_value") not in SPECIAL_FUNCTIONS:
        raise ValidationFailed(f"Unknown special function '{values.get('source_value')}'")


async def list_pdf_shortcodes(db: AsyncSession, *, active_only: bool = False,
                              category: Optional[str] = None) -> list[PdfShortcode]:
    stmt = select(PdfShortcode).order_by(PdfShortcode.category, PdfShortcode.name)
    if active_only:
        stmt = stmt.where(PdfShortcode.is_active.is_(True))
    if category:
        stmt = stmt.where(PdfShortcode.category == category)
    return list((await db.execute(stmt)).scalars().all())


async def pdf_shortcode_categories(db: AsyncSession) -> list[str]:
    rows = await db.execute(select(PdfShortcode.category).distinct())
    return sorted(r[0] for r in rows.all())


async def get_pdf_shortcode(db: AsyncSession, shortcode_id: str) -> PdfShortcode:
    sc = await db.get(PdfShortcode, shortcode_id)
    if sc is None:
        raise NotFoundError(f"PDF shortcode {shortcode_id} not found")
    return sc


async def _ensure_unique(db: AsyncSession, code: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(PdfShortcode.id).where(PdfShortcode.code == code)
    if exclude_id:
        stmt = stmt.where(PdfShortcode.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise ConflictError(f"PDF shortcode {code} already exists")


async def create_pdf_shortcode(db: AsyncSession, data: dict) -> PdfShortcode:
    values = {k: v for k, v in data.items() if k in PDF_SHORTCODE_COLUMNS}
    values["code"] = normalize_code(values.get("code", ""))
    if not (values.get("name") or "").strip():
        raise ValidationFailed("Name is required")
    _check({"source_type": "field", **values})
    await _ensure_unique(db, values["code"])
    sc = PdfShortcode(**values)
    db.add(sc)
    await db.commit()
    await db.refresh(sc)
    return sc


async def update_pdf_shortcode(db: AsyncSession, shortcode_id: str, data: dict) -> PdfShortcode:
    sc = await get_pdf_shortcode(db, shortcode_id)
    values = {k: v for k, v in data.items() if k in PDF_SHORTCODE_COLUMNS}
    if "code" in values:
        values["code"] = normalize_code(values["code"])
        await _ensure_unique(db, values["code"], exclude_id=shortcode_id)
    _check({"source_type": sc.source_type, "source_value": sc.source_value, **values})
    for key, value in values.items():
        setattr(sc, key, value)
    await db.commit()
    await db.refresh(sc)
    return sc


async def delete_pdf_shortcode(db: AsyncSession, shortcode_id: str) -> None:
    sc = await get_pdf_shortcode(db, shortcode_id)
    await db.delete(sc)
    await db.commit()
