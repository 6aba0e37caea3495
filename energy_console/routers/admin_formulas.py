from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import FormulaCreate, FormulaExecutePayload, FormulaTextPayload, FormulaUpdate
from ..services import formulas as formula_service
from ..utils import client_ip, require_admin_user

router = APIRouter(prefix="/api/admin/formulas", tags=["admin", "formulas"])


class TogglePayload(BaseModel):
    is_active: bool


@router.get("")
async def admin_list_formulas(
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    formulas = await formula_service.list_formulas(db, active_only=active_only)
    return {"formulas": [formula_service.formula_to_dict(f) for f in formulas]}


@router.get("/cache")
async def admin_formula_cache(admin=Depends(require_admin_user)):
    return formula_service.formula_cache_stats()


@router.delete("/cache")
async def admin_clear_formula_cache(admin=Depends(require_admin_user)):
    formula_service.clear_formula_cache()
    return {"ok": True}


@router.post("/validate")
async def admin_validate_formula(
    payload: FormulaTextPayload,
    admin=Depends(require_admin_user),
):
    return formula_service.validate_formula(payload.formula_text).as_dict()


@router.post("/execute")
async def admin_execute_formula(
    payload: FormulaExecutePayload,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    if payload.formula_id:
        result = await formula_service.execute_formula(db, payload.formula_id, payload.form_data, client_ip(request))
    elif payload.formula_text:
        formula_service.formula_rate_limiter.check(client_ip(request))
        result = await formula_service.execute_formula_with_fields(db, payload.formula_text, payload.form_data)
    else:
        raise HTTPException(status_code=400, detail="formula_id or formula_text is required")
    return result.as_dict()


@router.post("")
async def admin_create_formula(
    payload: FormulaCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    formula = await formula_service.create_formula(db, payload.model_dump())
    return {"ok": True, "formula": formula_service.formula_to_dict(formula)}


@router.get("/{formula_id}")
async def admin_get_formula(
    formula_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return formula_service.formula_to_dict(await formula_service.get_formula(db, formula_id))


@router.patch("/{formula_id}")
async def admin_update_formula(
    formula_id: str,
    payload: FormulaUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    formula = await formula_service.update_formula(db, formula_id, payload.model_dump(exclude_unset=True))
    return {"ok": True, "formula": formula_service.formula_to_dict(formula)}


@router.post("/{formula_id}/toggle")
async def admin_toggle_formula(
    formula_id: str,
    payload: TogglePayload,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    formula = await formula_service.toggle_formula_status(db, formula_id, payload.is_active)
    return {"ok": True, "formula": formula_service.formula_to_dict(formula)}


@router.delete("/{formula_id}")
async def admin_delete_formula(
    formula_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    await formula_service.delete_formula(db, formula_id)
    return {"ok": True}
