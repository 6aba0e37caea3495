# energy_console/services/form_schemas.py
"""Stored form-builder schemas: pages of sections of fields.

A form is identified by name. Editing in place keeps the version; publishing
a new version deactivates the current row and inserts a copy with the next
version number. The live schema is the active row with the highest version.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.models import FormSchema
from energy_console.schemas import FormFieldSpec, FormSchemaDocument
from energy_console.services.errors import ConflictError, NotFoundError, ValidationFailed
from energy_console.services.values import is_blank, to_float
from energy_console.settings.config import settings

logger = logging.getLogger(__name__)

FORM_SCHEMA_COLUMNS = {"name", "description", "schema_data", "is_active"}

_email = TypeAdapter(EmailStr)


def form_schema_to_dict(fs: FormSchema) -> dict:
    return {
        "id": fs.id,
        "name": fs.name,
        "description": fs.description,
        "schema_data": fs.schema_data or {},
        "version": fs.version,
        "is_active": bool(fs.is_active),
        "created_by": fs.created_by,
        "created_at": fs.created_at.isoformat() if fs.created_at else None,
        "updated_at": fs.updated_at.isoformat() if fs.updated_at else None,
    }


# ---------------------------------------------------------------------------
# Schema documents
# ---------------------------------------------------------------------------

def schema_data_errors(data: Any) -> List[str]:
    """Problems with a ``schema_data`` document, as ``path: message`` lines."""
    if not isinstance(data, dict):
        return ["schema_data: must be an object"]
    try:
        FormSchemaDocument.model_validate(data)
    except ValidationError as exc:
        out = []
        for issue in exc.errors():
            path = ".".join(str(p) for p in issue["loc"]) or "schema_data"
            out.append(f"{path}: {issue['msg']}")
        return out
    return []


def parse_schema_data(data: Any) -> FormSchemaDocument:
    errors = schema_data_errors(data)
    if errors:
        raise ValidationFailed("Invalid form schema", details=errors)
    return FormSchemaDocument.model_validate(data)


def iter_fields(document: FormSchemaDocument, *, enabled_only: bool = True) -> Iterator[FormFieldSpec]:
    """Fields in render order: page by page, section by section."""
    for page in document.pages:
        for section in page.sections:
            if enabled_only and not section.enabled:
                continue
            for f in section.fields:
                if enabled_only and not f.enabled:
                    continue
                yield f


def _field_errors(f: FormFieldSpec, value: Any) -> List[str]:
    rules = f.validation
    if is_blank(value) or (f.type == "checkbox" and value is False):
        if f.required or rules.required:
            return [f"{f.label} is required"]
        return []

    errors: List[str] = []
    if f.type == "number":
        number = to_float(value)
        if number is None:
            return [f"{f.label} must be a number"]
        if rules.min is not None and number < rules.min:
            errors.append(f"{f.label} must be at least {rules.min:g}")
        if rules.max is not None and number > rules.max:
            errors.append(f"{f.label} must be at most {rules.max:g}")
        return errors

    if f.type in ("select", "radio"):
        allowed = f.option_values()
        chosen = value if isinstance(value, list) else [value]
        if any(str(v) not in allowed for v in chosen):
            errors.append(f"{f.label} has an unknown option")
        return errors

    if f.type == "checkbox":
        return errors

    text = str(value)
    if f.type == "email":
        try:
            _email.validate_python(text)
        except ValidationError:
            errors.append(f"{f.label} must be a valid e-mail address")
    if rules.minLength is not None and len(text) < rules.minLength:
        errors.append(f"{f.label} must be at least {rules.minLength} characters")
    if rules.maxLength is not None and len(text) > rules.maxLength:
        errors.append(f"{f.label} must be at most {rules.maxLength} characters")
    if rules.pattern and not re.fullmatch(rules.pattern, text):
        errors.append(f"{f.label} has an invalid format")
    return errors


def submission_errors(document: FormSchemaDocument, form_data: Dict[str, Any]) -> Dict[str, List[str]]:
    """Validate submitted values against the enabled fields; keyed by field id."""
    errors: Dict[str, List[str]] = {}
    for f in iter_fields(document):
        problems = _field_errors(f, form_data.get(f.id))
        if problems:
            errors[f.id] = problems
    return errors


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

async def list_form_schemas(
    db: AsyncSession, *, name: Optional[str] = None, is_active: Optional[bool] = None
) -> list[FormSchema]:
    stmt = select(FormSchema)
    if name:
        stmt = stmt.where(FormSchema.name == name).order_by(FormSchema.version.desc())
    else:
        stmt = stmt.order_by(FormSchema.created_at.desc(), FormSchema.version.desc())
    if is_active is not None:
        stmt = stmt.where(FormSchema.is_active.is_(is_active))
    return list((await db.execute(stmt)).scalars().all())


async def get_form_schema(db: AsyncSession, schema_id: str) -> FormSchema:
    """Active schemas only; a soft-deleted or superseded row is not found."""
    fs = await db.get(FormSchema, schema_id)
    if fs is None or not fs.is_active:
        raise NotFoundError(f"Form schema {schema_id} not found")
    return fs


async def get_active_form_schema(db: AsyncSession, name: Optional[str] = None) -> Optional[FormSchema]:
    name = name or settings.FORM_SCHEMA_NAME
    stmt = (
        select(FormSchema)
        .where(FormSchema.name == name, FormSchema.is_active.is_(True))
        .order_by(FormSchema.version.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalars().first()


async def _next_version(db: AsyncSession, name: str) -> int:
    current = (await db.execute(select(func.max(FormSchema.version)).where(FormSchema.name == name))).scalar()
    return (current or 0) + 1


async def create_form_schema(db: AsyncSession, data: dict, created_by: Optional[int] = None) -> FormSchema:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationFailed("Form schema name is required")
    parse_schema_data(data.get("schema_data"))
    existing = await get_active_form_schema(db, name)
    if existing is not None:
        raise ConflictError(f"Form schema '{name}' already exists; publish a new version instead")
    fs = FormSchema(
        name=name,
        description=data.get("description"),
        schema_data=data["schema_data"],
        version=await _next_version(db, name),
        is_active=True,
        created_by=created_by,
    )
    db.add(fs)
    await db.commit()
    await db.refresh(fs)
    logger.info("Form schema '%s' v%d created", fs.name, fs.version)
    return fs


async def update_form_schema(db: AsyncSession, schema_id: str, data: dict) -> FormSchema:
    """Edit in place; the version number stays the same."""
    fs = await get_form_schema(db, schema_id)
    values = {k: v for k, v in data.items() if k in FORM_SCHEMA_COLUMNS}
    if "schema_data" in values:
        parse_schema_data(values["schema_data"])
    if "name" in values:
        values["name"] = (values["name"] or "").strip()
        if not values["name"]:
            raise ValidationFailed("Form schema name is required")
        if values["name"] != fs.name and await get_active_form_schema(db, values["name"]) is not None:
            raise ConflictError(f"Form schema '{values['name']}' already exists")
    for key, value in values.items():
        setattr(fs, key, value)
    await db.commit()
    await db.refresh(fs)
    return fs


async def create_new_version(
    db: AsyncSession, schema_id: str, data: dict, created_by: Optional[int] = None
) -> FormSchema:
    """Deactivate the current row and publish a copy with the changes applied."""
    current = await get_form_schema(db, schema_id)
    name = (data.get("name") or current.name).strip()
    schema_data = data.get("schema_data") or current.schema_data
    parse_schema_data(schema_data)

    previous_id = current.id
    current.is_active = False
    await db.flush()
    fs = FormSchema(
        name=name,
        description=data["description"] if data.get("description") is not None else current.description,
        schema_data=schema_data,
        version=max(await _next_version(db, name), (current.version or 1) + 1),
        is_active=True,
        created_by=created_by if created_by is not None else current.created_by,
    )
    db.add(fs)
    await db.commit()
    await db.refresh(fs)
    logger.info("Form schema '%s' published as v%d (was %s)", fs.name, fs.version, previous_id)
    return fs


async def delete_form_schema(db: AsyncSession, schema_id: str) -> None:
    """Soft delete."""
    fs = await get_form_schema(db, schema_id)
    fs.is_active = False
    await db.commit()


async def hard_delete_form_schema(db: AsyncSession, schema_id: str) -> None:
    """Remove the row whatever its state."""
    result = await db.execute(delete(FormSchema).where(FormSchema.id == schema_id))
    if not result.rowcount:
        await db.rollback()
        raise NotFoundError(f"Form schema {schema_id} not found")
    await db.commit()
    logger.info("Form schema %s hard deleted", schema_id)
