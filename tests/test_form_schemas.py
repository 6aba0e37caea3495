import copy

import pytest

from energy_console.services import form_schemas
from energy_console.services.errors import ConflictError, NotFoundError, ValidationFailed

SCHEMA = {
    "id": "energy-calculator",
    "name": "Energy Calculator Form",
    "pages": [
        {
            "id": "house",
            "title": "Talo",
            "sections": [
                {
                    "id": "basics",
                    "title": "Perustiedot",
                    "fields": [
                        {"id": "neliot", "type": "number", "label": "Pinta-ala", "required": True,
                         "validation": {"required": True, "min": 10, "max": 1000}},
                        {"id": "lammitysmuoto", "type": "select", "label": "Lämmitysmuoto",
                         "options": ["Öljy", "Sähkö", {"value": "Puu", "label": "Puulämmitys"}]},
                    ],
                },
                {
                    "id": "extra",
                    "title": "Lisätiedot",
                    "enabled": False,
                    "fields": [{"id": "sauna", "type": "checkbox", "label": "Sauna", "required": True}],
                },
            ],
        },
        {
            "id": "contact",
            "title": "Yhteystiedot",
            "sections": [
                {
                    "id": "person",
                    "title": "Henkilö",
                    "fields": [
                        {"id": "sahkoposti", "type": "email", "label": "Sähköposti", "required": True},
                        {"id": "postinumero", "type": "text", "label": "Postinumero",
                         "validation": {"pattern": r"\d{5}"}},
                    ],
                }
            ],
        },
    ],
}


def _schema(**changes):
    data = copy.deepcopy(SCHEMA)
    data.update(changes)
    return data


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def test_valid_document_has_no_errors():
    assert form_schemas.schema_data_errors(SCHEMA) == []


@pytest.mark.parametrize(
    "mutate,needle",
    [
        (lambda d: d.update(pages=[]), "pages"),
        (lambda d: d["pages"][0]["sections"][0]["fields"][1].update(options=[]), "must have options"),
        (lambda d: d["pages"][0]["sections"][0]["fields"][0]["validation"].update(min=5000), "invalid range"),
        (lambda d: d["pages"][1]["sections"][0]["fields"][0].update(id="neliot"), "Duplicate field id 'neliot'"),
        (lambda d: d["pages"][0]["sections"][0]["fields"][0].update(type="slider"), "type"),
        (lambda d: d["pages"][1]["sections"][0]["fields"][1]["validation"].update(pattern="("), "invalid pattern"),
    ],
)
def test_document_errors(mutate, needle):
    data = _schema()
    mutate(data)
    errors = form_schemas.schema_data_errors(data)
    assert errors
    assert any(needle in e for e in errors)


def test_non_object_document():
    assert form_schemas.schema_data_errors(["pages"]) == ["schema_data: must be an object"]


def test_iter_fields_skips_disabled_sections():
    document = form_schemas.parse_schema_data(SCHEMA)
    assert [f.id for f in form_schemas.iter_fields(document)] == ["neliot", "lammitysmuoto", "sahkoposti", "postinumero"]
    assert "sauna" in [f.id for f in form_schemas.iter_fields(document, enabled_only=False)]


def test_submission_errors():
    document = form_schemas.parse_schema_data(SCHEMA)
    ok = {"neliot": "120", "lammitysmuoto": "Puu", "sahkoposti": "matti@example.com", "postinumero": "33100"}
    assert form_schemas.submission_errors(document, ok) == {}

    errors = form_schemas.submission_errors(
        document, {"neliot": "5", "lammitysmuoto": "Kaasu", "sahkoposti": "nope", "postinumero": "331"}
    )
    assert errors == {
        "neliot": ["Pinta-ala must be at least 10"],
        "lammitysmuoto": ["Lämmitysmuoto has an unknown option"],
        "sahkoposti": ["Sähköposti must be a valid e-mail address"],
        "postinumero": ["Postinumero has an invalid format"],
    }

    missing = form_schemas.submission_errors(document, {})
    assert missing == {"neliot": ["Pinta-ala is required"], "sahkoposti": ["Sähköposti is required"]}


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

async def test_create_and_fetch_active(db):
    fs = await form_schemas.create_form_schema(db, {"name": "Energy Calculator Form", "schema_data": SCHEMA}, created_by=7)
    assert fs.version == 1
    assert fs.is_active is True
    assert fs.created_by == 7

    active = await form_schemas.get_active_form_schema(db)
    assert active.id == fs.id
    assert (await form_schemas.get_form_schema(db, fs.id)).name == "Energy Calculator Form"


async def test_create_rejects_bad_input(db):
    with pytest.raises(ValidationFailed):
        await form_schemas.create_form_schema(db, {"name": "", "schema_data": SCHEMA})
    with pytest.raises(ValidationFailed) as info:
        await form_schemas.create_form_schema(db, {"name": "x", "schema_data": _schema(pages=[])})
    assert info.value.details
    await form_schemas.create_form_schema(db, {"name": "x", "schema_data": SCHEMA})
    with pytest.raises(ConflictError):
        await form_schemas.create_form_schema(db, {"name": "x", "schema_data": SCHEMA})


async def test_update_in_place_keeps_version(db):
    fs = await form_schemas.create_form_schema(db, {"name": "form", "schema_data": SCHEMA})
    updated = await form_schemas.update_form_schema(db, fs.id, {"description": "Kevät 2026"})
    assert updated.version == 1
    assert updated.description == "Kevät 2026"
    with pytest.raises(ValidationFailed):
        await form_schemas.update_form_schema(db, fs.id, {"schema_data": {"pages": []}})


async def test_new_version_supersedes_current(db):
    v1 = await form_schemas.create_form_schema(db, {"name": "form", "description": "eka", "schema_data": SCHEMA})
    changed = _schema()
    changed["pages"][0]["title"] = "Talotiedot"
    v2 = await form_schemas.create_new_version(db, v1.id, {"schema_data": changed})

    assert v2.id != v1.id
    assert v2.version == 2
    assert v2.description == "eka"
    assert v2.schema_data["pages"][0]["title"] == "Talotiedot"

    with pytest.raises(NotFoundError):
        await form_schemas.get_form_schema(db, v1.id)
    assert (await form_schemas.get_active_form_schema(db, "form")).id == v2.id
    rows = await form_schemas.list_form_schemas(db, name="form")
    assert [(r.version, r.is_active) for r in rows] == [(2, True), (1, False)]
    assert [r.id for r in await form_schemas.list_form_schemas(db, is_active=True)] == [v2.id]


async def test_soft_and_hard_delete(db):
    fs = await form_schemas.create_form_schema(db, {"name": "form", "schema_data": SCHEMA})
    await form_schemas.delete_form_schema(db, fs.id)
    assert await form_schemas.get_active_form_schema(db, "form") is None
    assert len(await form_schemas.list_form_schemas(db, name="form")) == 1

    # a soft-deleted row can still be removed for good
    await form_schemas.hard_delete_form_schema(db, fs.id)
    assert await form_schemas.list_form_schemas(db) == []
    with pytest.raises(NotFoundError):
        await form_schemas.hard_delete_form_schema(db, fs.id)


async def test_name_freed_after_delete(db):
    fs = await form_schemas.create_form_schema(db, {"name": "form", "schema_data": SCHEMA})
    await form_schemas.delete_form_schema(db, fs.id)
    again = await form_schemas.create_form_schema(db, {"name": "form", "schema_data": SCHEMA})
    assert again.version == 2
