import pytest

from energy_console.services import formulas
from energy_console.services.errors import ConflictError, RateLimited, ValidationFailed
from energy_console.services.formulas import (
    FormulaError,
    evaluate_expression,
    execute_formula,
    execute_formula_with_fields,
    substitute_fields,
    validate_formula,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("2 ^ 3", 8),
        ("Math.sqrt(16) + Math.max(1, 4)", 8),
        ("round(2.5)", 3),
        ("round(-2.5)", -2),
        ("round(1.2345, 2)", 1.23),
        ("round(2.5, 1e9)", 2.5),
        ("round(1.25, -3)", 1),
        ("floor(PI)", 3),
        ("10 % 4", 2),
        ("-3 + +1", -2),
    ],
)
def test_evaluate_expression(text, expected):
    assert evaluate_expression(text) == pytest.approx(expected)


def test_evaluate_with_variables():
    assert evaluate_expression("area * height", {"area": "100", "height": "2,5"}) == pytest.approx(250)


@pytest.mark.parametrize(
    "text,message",
    [
        ("1 / 0", "Division by zero"),
        ("__import__('os')", "Unsupported"),
        ("open('x')", "Unsupported function call"),
        ("foo + 1", "Unknown variable"),
        ("2 ^ 1000", "Exponent too large"),
        ("1 +", "Invalid formula syntax"),
        ("'a' + 'b'", "Unsupported constant"),
        ("", "cannot be empty"),
        ("(1).real", "Unsupported expression element"),
    ],
)
def test_evaluate_rejects(text, message):
    with pytest.raises(FormulaError) as info:
        evaluate_expression(text)
    assert message in info.value.message


def test_substitute_fields():
    assert evaluate_expression(substitute_fields("[field:neliot] * 2", {"neliot": "120,5"})) == pytest.approx(241)
    with pytest.raises(FormulaError, match="has no value"):
        substitute_fields("[field:neliot]", {"neliot": ""})
    with pytest.raises(FormulaError, match="non-numeric"):
        substitute_fields("[field:neliot]", {"neliot": "lots"})


def test_validate_formula():
    ok = validate_formula("[field:neliot] * 2.5")
    assert ok.is_valid
    assert any("field reference" in w for w in ok.warnings)

    assert not validate_formula("").is_valid
    assert not validate_formula("(1 + 2").is_valid
    assert not validate_formula("eval(1)").is_valid
    assert not validate_formula("1 // 2").is_valid
    assert not validate_formula("1" * 1001).is_valid
    assert "Formula should contain mathematical operations" in validate_formula("42").warnings


async def test_create_rejects_invalid_and_duplicate(db):
    with pytest.raises(ValidationFailed):
        await formulas.create_formula(db, {"name": "bad", "formula_text": "(1 + "})
    with pytest.raises(ValidationFailed):
        await formulas.create_formula(db, {"name": "x", "formula_text": "1+1", "formula_type": "evil"})
    await formulas.create_formula(db, {"name": "area", "formula_text": "1 + 1"})
    with pytest.raises(ConflictError):
        await formulas.create_formula(db, {"name": "area", "formula_text": "2 + 2"})


async def test_formula_references_resolve(db):
    await formulas.create_formula(db, {"name": "volume", "formula_text": "[field:neliot] * [field:huonekorkeus]"})
    total = await formulas.create_formula(db, {"name": "need", "formula_text": "[formula:volume] * 17 * 3.2"})

    result = await execute_formula(db, total.id, {"neliot": 100, "huonekorkeus": 2.5})
    assert result.success, result.error
    assert result.result == pytest.approx(13600)


async def test_circular_reference_is_reported(db):
    a = await formulas.create_formula(db, {"name": "a", "formula_text": "[formula:b] + 1"})
    await formulas.create_formula(db, {"name": "b", "formula_text": "[formula:a] * 2"})

    result = await execute_formula(db, a.id, {})
    assert not result.success
    assert "Circular dependency detected: a → b → a" == result.error


async def test_inactive_reference_fails(db):
    inner = await formulas.create_formula(db, {"name": "inner", "formula_text": "1 + 1"})
    await formulas.toggle_formula_status(db, inner.id, False)
    result = await execute_formula_with_fields(db, "[formula:inner] * 2", {})
    assert not result.success
    assert "not found or not active" in result.error


async def test_update_bumps_version_and_clears_cache(db):
    f = await formulas.create_formula(db, {"name": "c", "formula_text": "1 + 1"})
    await formulas.get_cached_formulas(db)
    assert formulas.formula_cache_stats()["size"] == 1

    updated = await formulas.update_formula(db, f.id, {"formula_text": "2 + 2"})
    assert updated.version == 2
    assert formulas.formula_cache_stats()["size"] == 0

    same = await formulas.update_formula(db, f.id, {"description": "doc"})
    assert same.version == 2


async def test_execution_is_rate_limited_per_client(db, monkeypatch):
    f = await formulas.create_formula(db, {"name": "r", "formula_text": "1 + 1"})
    monkeypatch.setattr(formulas.formula_rate_limiter, "max_requests", 2)
    await execute_formula(db, f.id, {}, client_key="1.2.3.4")
    await execute_formula(db, f.id, {}, client_key="1.2.3.4")
    with pytest.raises(RateLimited):
        await execute_formula(db, f.id, {}, client_key="1.2.3.4")
    assert (await execute_formula(db, f.id, {}, client_key="5.6.7.8")).success


def test_find_formula_loose_matching():
    snaps = [formulas.FormulaSnapshot("1", "Annual Savings", "1+1", "€", True)]
    assert formulas.find_formula(snaps, "annual-savings") is None
    assert formulas.find_formula(snaps, "annual-savings", loose=True).id == "1"
    assert formulas.find_formula(snaps, "Annual Savings").id == "1"
