from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import FormSchemaCreate, FormSchemaUpdate, FormSchemaVersionPayload
from ..services import form_schemas as schema_service
from ..services.errors import NotFoundError
from ..utils import require_admin_user

router = APIRouter(prefix="/api/admin/form-schemas", tags=["admin", "form-builder"])


@router.get("")
async def admin_list_form_schemas(
    name: Optional[str] = None,
    is_active: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    rows = await schema_service.list_form_schemas(db, name=name, is_active=is_active)
    return {"schemas": [schema_service.form_schema_to_dict(fs) for fs in rows]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def admin_create_form_schema(
    payload: FormSchemaCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    fs = await schema_service.create_form_schema(db, payload.model_dump(), created_by=getattr(admin, "id", None))
    return {"ok": True, "schema": schema_service.form_schema_to_dict(fs)}


@router.get("/active")
async def admin_active_form_schema(
    name: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    fs = await schema_service.get_active_form_schema(db, name)
    if fs is None:
        raise NotFoundError("No active form schema found")
    return schema_service.form_schema_to_dict(fs)


@router.post("/validate")
async def admin_validate_form_schema(
    payload: dict,
    admin=Depends(require_admin_user),
):
    errors = schema_service.schema_data_errors(payload.get("schema_data", payload))
    return {"valid": not errors, "errors": errors}


@router.get("/{schema_id}")
async def admin_get_form_schema(
    schema_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return schema_service.form_schema_to_dict(await schema_service.get_form_schema(db, schema_id))


@router.patch("/{schema_id}")
async def admin_update_form_schema(
    schema_id: str,
    payload: FormSchemaUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    fs = await schema_service.update_form_schema(db, schema_id, payload.model_dump(exclude_unset=True))
    return {"ok": True, "schema": schema_service.form_schema_to_dict(fs)}


@router.post("/{schema_id}/versions", status_code=status.HTTP_201_CREATED)
async def admin_publish_form_schema_version(
    schema_id: str,
    payload: FormSchemaVersionPayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    fs = await schema_service.create_new_version(
        db, schema_id, payload.model_dump(exclude_unset=True), created_by=getattr(admin, "id", None)
    )
    return {"ok": True, "schema": schema_service.form_schema_to_dict(fs)}


@router.delete("/{schema_id}")
async def admin_delete_form_schema(
    schema_id: str,
    hard: bool = False,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    if hard:
        await schema_service.hard_delete_form_schema(db, schema_id)
    else:
        await schema_service.delete_form_schema(db, schema_id)
    return {"ok": True}
