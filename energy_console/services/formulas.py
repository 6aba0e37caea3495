# energy_console/services/formulas.py
"""Formula library: storage, validation and safe evaluation.

Formulas are arithmetic expressions that may reference calculator fields as
``[field:name]`` and other formulas as ``[formula:name]``. Evaluation walks a
whitelisted Python AST; nothing is ever passed to ``eval``.
"""
from __future__ import annotations

import ast
import logging
import math
import operator
import re
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.models import Formula
from energy_console.services.errors import ConflictError, ConsoleError, NotFoundError, ValidationFailed
from energy_console.services.ratelimit import RateLimiter
from energy_console.services.values import is_blank, to_float
from energy_console.settings.config import settings

logger = logging.getLogger(__name__)

ALLOWED_FORMULA_TYPES = ("energy_calculation", "custom", "template")
MAX_FORMULA_LENGTH = 1000
MAX_VARIABLES_PER_FORMULA = 20
MAX_DEPENDENCY_DEPTH = 10
MAX_EXPONENT = 100
MAX_ROUND_DIGITS = 15

FIELD_REF_RE = re.compile(r"\[field:([^\]]+)\]")
FORMULA_REF_RE = re.compile(r"\[formula:([^\]]+)\]")

DANGEROUS_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"eval\s*\(", r"Function\s*\(", r"new\s+Function", r"setTimeout\s*\(", r"setInterval\s*\(",
        r"import\s*\(", r"require\s*\(", r"global\s*\(", r"process\s*\.", r"window\s*\.",
        r"document\s*\.", r"console\s*\.", r"localStorage\s*\.", r"sessionStorage\s*\.",
        r"fetch\s*\(", r"XMLHttpRequest", r"WebSocket", r"Worker", r"__\w+__", r"lambda\b",
    )
]
SUSPICIOUS_PATTERNS = [
    re.compile(r";{2,}"),
    re.compile(r"`.*\$\{.*\}.*`"),
    re.compile(r"/\*.*\*/"),
    re.compile(r"//"),
    re.compile(r"<!--.*-->"),
    re.compile(r"<script.*>.*</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"on\w+\s*="),
]
SUPPORTED_FUNCTIONS = ("abs", "round", "floor", "ceil", "pow", "sqrt", "min", "max")

formula_rate_limiter = RateLimiter(settings.FORMULA_RATE_LIMIT_PER_MINUTE, 60)


class FormulaError(ConsoleError):
    status_code = 422


@dataclass(slots=True)
class FormulaValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"is_valid": self.is_valid, "errors": self.errors, "warnings": self.warnings}


@dataclass(slots=True)
class FormulaResult:
    success: bool
    result: Optional[float] = None
    error: Optional[str] = None
    execution_ms: float = 0.0

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "result": self.result,
            "error": self.error,
            "execution_ms": round(self.execution_ms, 3),
        }


@dataclass(frozen=True, slots=True)
class FormulaSnapshot:
    id: str
    name: str
    formula_text: str
    unit: Optional[str]
    is_active: bool
    description: Optional[str] = None
    formula_type: str = "custom"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_formula(formula_text: str) -> FormulaValidation:
    text = formula_text or ""
    errors: list[str] = []
    warnings: list[str] = []

    if not text.strip():
        errors.append("Formula text cannot be empty")
    if not re.search(r"[+\-*/()]", text):
        warnings.append("Formula should contain mathematical operations")
    if re.search(r"Math\.(?!abs|round|floor|ceil|pow|sqrt|min|max)\w+", text):
        warnings.append("Formula contains unsupported mathematical functions. Supported: " + ", ".join(SUPPORTED_FUNCTIONS))

    field_refs = len(FIELD_REF_RE.findall(text))
    formula_refs = len(FORMULA_REF_RE.findall(text))
    if field_refs:
        warnings.append(f"Formula contains {field_refs} field reference(s): use [field:fieldname] format")
    if formula_refs:
        warnings.append(f"Formula contains {formula_refs} formula reference(s): use [formula:formulaname] format")

    if any(p.search(text) for p in DANGEROUS_PATTERNS):
        errors.append("Formula contains potentially dangerous code patterns")
    for opener, closer, label in (("(", ")", "parentheses"), ("[", "]", "brackets"), ("{", "}", "braces")):
        if text.count(opener) != text.count(closer):
            errors.append(f"Unbalanced {label} in formula")
    if any(p.search(text) for p in SUSPICIOUS_PATTERNS):
        errors.append("Formula contains suspicious patterns")
    if len(text) > MAX_FORMULA_LENGTH:
        errors.append(f"Formula is too long (maximum {MAX_FORMULA_LENGTH} characters)")

    if len(re.findall(r"[+\-*/]", text)) > 50:
        warnings.append("Formula contains many operators - consider simplifying")
    if text.count("(") > 10:
        warnings.append("Formula has deep nesting - consider simplifying")

    return FormulaValidation(not errors, errors, warnings)


def validate_access_control(data: dict) -> None:
    if data.get("formula_type") and data["formula_type"] not in ALLOWED_FORMULA_TYPES:
        raise ValidationFailed("Invalid formula type")
    if data.get("formula_text") and len(data["formula_text"]) > MAX_FORMULA_LENGTH:
        raise ValidationFailed(f"Formula too long (max {MAX_FORMULA_LENGTH} characters)")
    if data.get("variables") and len(data["variables"]) > MAX_VARIABLES_PER_FORMULA:
        raise ValidationFailed(f"Too many variables (max {MAX_VARIABLES_PER_FORMULA})")


# ---------------------------------------------------------------------------
# Safe evaluation
# ---------------------------------------------------------------------------

def _safe_pow(base: float, exponent: float) -> float:
    if abs(exponent) > MAX_EXPONENT:
        raise FormulaError(f"Exponent too large (max {MAX_EXPONENT})")
    return math.pow(base, exponent)


def _js_round(value: float, digits: int = 0) -> float:
    # half-up like the calculator front end, not banker's rounding
    factor = 10 ** min(max(int(digits), 0), MAX_ROUND_DIGITS)
    return math.floor(value * factor + 0.5) / factor


_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: _safe_pow,
}
_UNARY_OPS = {ast.USub: operator.neg, ast.UAdd: operator.pos}
_FUNCTIONS = {
    "abs": abs,
    "round": _js_round,
    "floor": math.floor,
    "ceil": math.ceil,
    "pow": _safe_pow,
    "sqrt": math.sqrt,
    "min": min,
    "max": max,
}
_CONSTANTS = {"PI": math.pi, "E": math.e}


def _prepare(expression: str) -> str:
    text = (expression or "").strip()
    text = re.sub(r"\bMath\.", "", text)
    # ^ is exponentiation in the formula editor
    return text.replace("^", "**")


def _eval_node(node: ast.AST, variables: dict[str, float]) -> float:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body, variables)
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise FormulaError(f"Unsupported constant {node.value!r}")
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        left = _eval_node(node.left, variables)
        right = _eval_node(node.right, variables)
        try:
            return _BIN_OPS[type(node.op)](left, right)
        except ZeroDivisionError:
            raise FormulaError("Division by zero") from None
        except (ValueError, OverflowError) as exc:
            raise FormulaError(f"Math error: {exc}") from None
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand, variables))
    if isinstance(node, ast.Name):
        if node.id in variables:
            return variables[node.id]
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        raise FormulaError(f"Unknown variable '{node.id}'")
    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS or node.keywords:
            raise FormulaError("Unsupported function call")
        args = [_eval_node(arg, variables) for arg in node.args]
        try:
            return _FUNCTIONS[node.func.id](*args)
        except (TypeError, ValueError, OverflowError) as exc:
            raise FormulaError(f"Invalid arguments for {node.func.id}: {exc}") from None
    raise FormulaError(f"Unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str, variables: Optional[dict[str, Any]] = None) -> float:
    """Evaluate an arithmetic expression. Raises FormulaError on anything unsafe."""
    text = _prepare(expression)
    if not text:
        raise FormulaError("Formula text cannot be empty")
    if len(text) > MAX_FORMULA_LENGTH:
        raise FormulaError(f"Formula is too long (maximum {MAX_FORMULA_LENGTH} characters)")
    scope: dict[str, float] = {}
    for key, value in (variables or {}).items():
        number = to_float(value)
        scope[key] = 0.0 if number is None else number
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as exc:
        raise FormulaError(f"Invalid formula syntax: {exc.msg}") from None
    result = _eval_node(tree, scope)
    if not isinstance(result, (int, float)) or not math.isfinite(result):
        raise FormulaError("Formula did not produce a finite number")
    return float(result)


def substitute_fields(formula_text: str, form_data: dict) -> str:
    """Replace ``[field:name]`` references with numeric form values."""

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        raw = form_data.get(name)
        if is_blank(raw):
            raise FormulaError(f"Field '{name}' is required for this calculation but has no value")
        number = to_float(raw)
        if number is None:
            raise FormulaError(f"Field '{name}' contains non-numeric value: '{raw}'")
        return f"({number!r})"

    return FIELD_REF_RE.sub(_replace, formula_text)


# ---------------------------------------------------------------------------
# Cache of active formulas
# ---------------------------------------------------------------------------

_cache: dict[str, Any] = {"formulas": None, "loaded_at": 0.0}


def clear_formula_cache() -> None:
    _cache["formulas"] = None
    _cache["loaded_at"] = 0.0


def formula_cache_stats() -> dict:
    formulas = _cache["formulas"]
    age = time.monotonic() - _cache["loaded_at"] if formulas is not None else None
    return {"size": len(formulas or []), "age_seconds": age, "ttl_seconds": settings.FORMULA_CACHE_TTL_SECONDS}


async def get_cached_formulas(db: AsyncSession, force_refresh: bool = False) -> list[FormulaSnapshot]:
    fresh = time.monotonic() - _cache["loaded_at"] < settings.FORMULA_CACHE_TTL_SECONDS
    if not force_refresh and _cache["formulas"] is not None and fresh:
        return _cache["formulas"]
    rows = (await db.execute(select(Formula).order_by(Formula.name))).scalars().all()
    snapshots = [FormulaSnapshot(r.id, r.name, r.formula_text, r.unit, bool(r.is_active), r.description, r.formula_type) for r in rows]
    _cache["formulas"] = snapshots
    _cache["loaded_at"] = time.monotonic()
    return snapshots


def _display_key(name: str) -> str:
    return re.sub(r"[\s\-]+", "-", (name or "").strip().lower())


def find_formula(formulas: list[FormulaSnapshot], name: str, *, loose: bool = False) -> Optional[FormulaSnapshot]:
    """Active formula by exact name, or case-insensitively with spaces and hyphens interchangeable."""
    for f in formulas:
        if f.is_active and f.name == name:
            return f
    if loose:
        key = _display_key(name)
        for f in formulas:
            if f.is_active and _display_key(f.name) == key:
                return f
    return None


# ---------------------------------------------------------------------------
# Execution with references
# ---------------------------------------------------------------------------

async def _resolve(
    db: AsyncSession,
    formula_text: str,
    form_data: dict,
    resolved: dict[str, float],
    stack: tuple[str, ...],
) -> float:
    if len(stack) > MAX_DEPENDENCY_DEPTH:
        raise FormulaError(f"Maximum formula dependency depth exceeded ({MAX_DEPENDENCY_DEPTH} levels)")
    formulas = None
    text = formula_text
    for ref in dict.fromkeys(FORMULA_REF_RE.findall(formula_text)):
        if ref in stack:
            raise FormulaError("Circular dependency detected: " + " → ".join(stack[stack.index(ref):] + (ref,)))
        if ref not in resolved:
            if formulas is None:
                formulas = await get_cached_formulas(db)
            target = find_formula(formulas, ref)
            if target is None:
                raise FormulaError(f"Referenced formula '{ref}' not found or not active")
            resolved[ref] = await _resolve(db, target.formula_text, form_data, resolved, stack + (ref,))
        text = text.replace(f"[formula:{ref}]", f"({resolved[ref]!r})")
    return evaluate_expression(substitute_fields(text, form_data))


async def execute_formula_with_fields(
    db: AsyncSession, formula_text: str, form_data: dict, *, formula_name: Optional[str] = None
) -> FormulaResult:
    """Resolve references and evaluate; errors come back in the result, not raised."""
    started = time.perf_counter()
    stack = (formula_name,) if formula_name else ()
    try:
        value = await _resolve(db, formula_text, form_data or {}, {}, stack)
        return FormulaResult(True, value, execution_ms=(time.perf_counter() - started) * 1000)
    except FormulaError as exc:
        logger.info("Formula evaluation failed: %s", exc.message)
        return FormulaResult(False, error=exc.message, execution_ms=(time.perf_counter() - started) * 1000)


async def execute_formula(
    db: AsyncSession, formula_id: str, form_data: dict, client_key: Optional[str] = None
) -> FormulaResult:
    if client_key:
        formula_rate_limiter.check(client_key)
    formula = await get_formula(db, formula_id)
    if not formula.is_active:
        return FormulaResult(False, error=f"Formula '{formula.name}' is not active")
    return await execute_formula_with_fields(db, formula.formula_text, form_data, formula_name=formula.name)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

FORMULA_COLUMNS = {"name", "description", "formula_text", "formula_type", "unit", "variables", "tags", "is_active"}


def formula_to_dict(f: Formula) -> dict:
    return {
        "id": f.id,
        "name": f.name,
        "description": f.description,
        "formula_text": f.formula_text,
        "formula_type": f.formula_type,
        "unit": f.unit,
        "variables": f.variables or {},
        "tags": f.tags or [],
        "version": f.version,
        "is_active": bool(f.is_active),
        "shortcode": f"[calc:{f.name}]",
    }


async def list_formulas(db: AsyncSession, *, active_only: bool = False) -> list[Formula]:
    stmt = select(Formula).order_by(Formula.created_at.desc())
    if active_only:
        stmt = stmt.where(Formula.is_active.is_(True))
    return list((await db.execute(stmt)).scalars().all())


async def get_formula(db: AsyncSession, formula_id: str) -> Formula:
    formula = await db.get(Formula, formula_id)
    if formula is None:
        raise NotFoundError(f"Formula {formula_id} not found")
    return formula


async def _ensure_unique_name(db: AsyncSession, name: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(Formula.id).where(Formula.name == name)
    if exclude_id:
        stmt = stmt.where(Formula.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise ConflictError(f"A formula named '{name}' already exists")


def _check_text(text: str) -> None:
    validation = validate_formula(text)
    if not validation.is_valid:
        raise ValidationFailed("Invalid formula", details=validation.errors)


async def create_formula(db: AsyncSession, data: dict) -> Formula:
    values = {k: v for k, v in data.items() if k in FORMULA_COLUMNS}
    if not (values.get("name") or "").strip():
        raise ValidationFailed("Formula name is required")
    validate_access_control(values)
    _check_text(values.get("formula_text", ""))
    await _ensure_unique_name(db, values["name"])
    formula = Formula(**values)
    db.add(formula)
    await db.commit()
    await db.refresh(formula)
    clear_formula_cache()
    logger.info("Created formula %s", formula.name)
    return formula


async def update_formula(db: AsyncSession, formula_id: str, data: dict) -> Formula:
    formula = await get_formula(db, formula_id)
    values = {k: v for k, v in data.items() if k in FORMULA_COLUMNS}
    validate_access_control(values)
    if "formula_text" in values:
        _check_text(values["formula_text"])
    if values.get("name") and values["name"] != formula.name:
        await _ensure_unique_name(db, values["name"], exclude_id=formula_id)
    text_changed = "formula_text" in values and values["formula_text"] != formula.formula_text
    for key, value in values.items():
        setattr(formula, key, value)
    if text_changed:
        formula.version = (formula.version or 1) + 1
    await db.commit()
    await db.refresh(formula)
    clear_formula_cache()
    return formula


async def delete_formula(db: AsyncSession, formula_id: str) -> None:
    formula = await get_formula(db, formula_id)
    await db.delete(formula)
    await db.commit()
    clear_formula_cache()


async def toggle_formula_status(db: AsyncSession, formula_id: str, is_active: bool) -> Formula:
    formula = await get_formula(db, formula_id)
    formula.is_active = is_active
    await db.commit()
    await db.refresh(formula)
    clear_formula_cache()
    return formula
