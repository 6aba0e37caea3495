import pytest

from energy_console.main import app
from energy_console.services import leads
from energy_console.utils import require_admin_user

BODY = {
    "neliot": "100",
    "huonekorkeus": "2,5",
    "henkilomaara": "2",
    "vesikiertoinen": "2500",
    "lammitysmuoto": "Puulämmitys",
    "sahkoposti": "matti@example.com",
    "nimi": "Matti Meikäläinen",
    "gdpr_consent": True,
}


async def test_healthz(client):
    resp = await client.get("/healthz")
    assert resp.json() == {"ok": True}


async def test_admin_api_requires_login(client):
    app.dependency_overrides.pop(require_admin_user)
    resp = await client.get("/api/admin/cards")
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Admin: cards
# ---------------------------------------------------------------------------

async def test_card_builder_roundtrip(client):
    resp = await client.post(
        "/api/admin/cards",
        json={"name": "house", "title": "Talo", "fields": [{"field_name": "neliot", "field_type": "number", "required": True}]},
    )
    assert resp.status_code == 200
    card = resp.json()["card"]
    assert card["fields"][0]["field_name"] == "neliot"
    assert card["rules"]["completion"]["type"] == "any_field"

    resp = await client.put(
        f"/api/admin/cards/{card['id']}/rules",
        json={"completion": {"type": "required_fields"}, "reveal": {"timing": "after_delay", "delay_seconds": 2}},
    )
    assert resp.json()["card"]["rules"] == {
        "completion": {"type": "required_fields"},
        "reveal": {"timing": "after_delay", "delay_seconds": 2},
    }

    resp = await client.post(f"/api/admin/cards/{card['id']}/duplicate")
    copy = resp.json()["card"]
    assert copy["is_active"] is False

    listed = (await client.get("/api/admin/cards")).json()["cards"]
    assert {c["id"] for c in listed} == {card["id"], copy["id"]}

    assert (await client.delete(f"/api/admin/cards/{copy['id']}")).json() == {"ok": True}


async def test_card_errors_map_to_status_codes(client, make_card):
    resp = await client.get("/api/admin/cards/missing")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Card missing not found"

    card = await make_card(fields=[("a", False)])
    resp = await client.put(
        f"/api/admin/cards/{card.id}/rules",
        json={"completion": {"type": "required_fields", "required_field_names": ["ghost"]},
              "reveal": {"timing": "immediately"}},
    )
    assert resp.status_code == 400
    assert any("ghost" in e for e in resp.json()["errors"])

    resp = await client.post(f"/api/admin/cards/{card.id}/fields", json={"field_name": "a"})
    assert resp.status_code == 409

    resp = await client.put(
        f"/api/admin/cards/{card.id}/rules",
        json={"completion": {"type": "any_field"}, "reveal": {"timing": "after_delay", "delay_seconds": 90}},
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Admin: themes, formulas, shortcodes
# ---------------------------------------------------------------------------

async def test_theme_endpoints(client):
    resp = await client.post("/api/admin/themes/preview", json={"primaryColor": "#000000"})
    assert resp.json()["theme_data"]["computed"]["primaryContrast"] == "#ffffff"
    assert "--ec-primary: #000000;" in resp.json()["css"]

    theme = (await client.post("/api/admin/themes", json={"name": "Dark", "primaryColor": "#111111"})).json()["theme"]
    await client.post(f"/api/admin/themes/{theme['id']}/activate")
    active = (await client.get("/api/admin/themes/active")).json()
    assert active["id"] == theme["id"]

    resp = await client.delete(f"/api/admin/themes/{theme['id']}")
    assert resp.status_code == 409

    css = await client.get("/api/calculator/theme.css")
    assert css.headers["content-type"].startswith("text/css")
    assert "--ec-primary: #111111;" in css.text


async def test_formula_endpoints(client):
    resp = await client.post("/api/admin/formulas", json={"name": "Tarve", "formula_text": "[field:neliot] * 2"})
    assert resp.status_code == 200
    formula = resp.json()["formula"]
    assert formula["shortcode"] == "[calc:Tarve]"

    resp = await client.post("/api/admin/formulas/execute",
                             json={"formula_id": formula["id"], "form_data": {"neliot": 50}})
    assert resp.json()["success"] is True
    assert resp.json()["result"] == 100

    resp = await client.post("/api/admin/formulas/execute", json={"formula_text": "1 / 0"})
    assert resp.json() == {**resp.json(), "success": False, "error": "Division by zero"}

    resp = await client.post("/api/admin/formulas/validate", json={"formula_text": "eval(1)"})
    assert resp.json()["is_valid"] is False

    resp = await client.post("/api/admin/formulas", json={"name": "Tarve", "formula_text": "1 + 1"})
    assert resp.status_code == 409

    resp = await client.post("/api/admin/formulas/execute", json={})
    assert resp.status_code == 400

    display = await client.post("/api/calculator/display",
                                json={"content": "Tulos: [calc:tarve]", "form_data": {"neliot": "60"}})
    assert display.json()["content"] == "Tulos: 120"


async def test_shortcode_processing_endpoint(client):
    await client.post("/api/admin/shortcodes", json={"name": "customer.name", "category": "customer"})
    resp = await client.post(
        "/api/admin/shortcodes/process",
        json={"content": "Hei {{customer.name}}", "context": {"customer": {"name": "Liisa"}}},
    )
    assert resp.json()["content"] == "Hei Liisa"


# ---------------------------------------------------------------------------
# Calculator runtime
# ---------------------------------------------------------------------------

async def test_calculator_reveal_flow(client, make_card):
    house = await make_card("house", fields=[("a", False), ("b", False)],
                            completion_rules={"form_completion": {"type": "all_fields"}})
    info = await make_card("info", type="info", order=1)
    await make_card("hidden", order=2, is_active=False)

    cards = (await client.get("/api/calculator/cards")).json()
    assert [c["name"] for c in cards["cards"]] == ["house", "info"]
    assert cards["theme"]["id"] == "default"

    session = (await client.post("/api/calculator/session", json={})).json()
    sid = session["session_id"]
    assert session["revealed"] == [house.id]

    step = (await client.post("/api/calculator/field",
                              json={"session_id": sid, "card_id": house.id, "field_name": "a", "value": "1"})).json()
    assert step["is_complete"] is False
    assert step["revealed"] == [house.id]

    step = (await client.post("/api/calculator/field",
                              json={"session_id": sid, "card_id": house.id, "field_name": "b", "value": "2"})).json()
    assert step["is_complete"] is True
    assert step["next_card_id"] == info.id
    assert sorted(step["revealed"]) == sorted([house.id, info.id])

    done = (await client.post("/api/calculator/complete", json={"session_id": sid, "card_id": info.id})).json()
    assert done["trigger"] == "auto_complete"

    state = (await client.get(f"/api/calculator/session/{sid}")).json()
    assert sorted(state["completed"]) == sorted([house.id, info.id])

    # restarting the same session wipes its progress
    restarted = (await client.post("/api/calculator/session", json={"session_id": sid})).json()
    assert restarted["revealed"] == [house.id]
    state = (await client.get(f"/api/calculator/session/{sid}")).json()
    assert state["completed"] == []

    assert (await client.delete(f"/api/calculator/session/{sid}")).json() == {"ok": True}


async def test_field_change_for_unknown_card(client):
    resp = await client.post("/api/calculator/field",
                             json={"session_id": "s", "card_id": "ghost", "field_name": "a", "value": "1"})
    assert resp.status_code == 404


async def test_savings_and_step_validation(client):
    resp = await client.post("/api/calculator/savings", json={"square_meters": 100, "current_heating_cost": 2500,
                                                               "current_heating_type": "wood"})
    data = resp.json()
    assert data["results"]["annual_savings"] == pytest.approx(1902.4)
    assert data["heating_type"] == "Wood Heating"

    resp = await client.post("/api/calculator/savings", json={"square_meters": 100, "current_heating_cost": 100})
    assert resp.json()["results"]["payback_period"] == pytest.approx(15000 / -497.6)

    resp = await client.post("/api/calculator/validate-step", json={"step": 3, "data": {"residents": "9"}})
    body = resp.json()
    assert body["valid"] is False
    assert "residents" in body["errors"]

    resp = await client.post("/api/calculator/validate-step", json={"step": 9, "data": {}})
    assert resp.status_code == 400


async def test_submit_lead_and_admin_views(client):
    resp = await client.post("/api/calculator/submit", json=BODY, headers={"referer": "https://example.com/laskuri"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "success"
    assert body["calculations"]["annual_savings"] == pytest.approx(1902.4)

    lead = (await client.get(f"/api/admin/leads/{body['lead_id']}")).json()
    assert lead["full_name"] == "Matti Meikäläinen"
    assert lead["form_data"]["source_page"] == "https://example.com/laskuri"

    resp = await client.patch(f"/api/admin/leads/{body['lead_id']}", json={"status": "contacted"})
    assert resp.json()["lead"]["status"] == "contacted"

    listing = (await client.get("/api/admin/leads", params={"status": "contacted"})).json()
    assert listing["total"] == 1

    export = await client.get("/api/admin/leads/export")
    assert export.headers["content-type"].startswith("text/csv")
    assert "matti@example.com" in export.text


async def test_submit_rejects_invalid_body(client):
    resp = await client.post("/api/calculator/submit", json={"sahkoposti": "matti@example.com"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


async def test_submit_is_rate_limited(client, monkeypatch):
    monkeypatch.setattr(leads.lead_rate_limiter, "max_requests", 1)
    assert (await client.post("/api/calculator/submit", json=BODY)).status_code == 200
    resp = await client.post("/api/calculator/submit", json=BODY)
    assert resp.status_code == 429
    assert resp.json()["code"] == "RATE_LIMITED"
    assert resp.headers["X-RateLimit-Limit"] == "1"


# ---------------------------------------------------------------------------
# Form builder schemas
# ---------------------------------------------------------------------------

FORM = {
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
                         "validation": {"min": 10, "max": 1000}},
                        {"id": "lammitysmuoto", "type": "radio", "label": "Lämmitys", "options": ["Öljy", "Sähkö"]},
                    ],
                }
            ],
        }
    ]
}


async def test_form_schema_admin_lifecycle(client):
    resp = await client.get("/api/calculator/form-schema")
    assert resp.status_code == 404

    resp = await client.post("/api/admin/form-schemas", json={"name": "Energy Calculator Form", "schema_data": FORM})
    assert resp.status_code == 201
    v1 = resp.json()["schema"]
    assert v1["version"] == 1
    assert v1["created_by"] == 1

    resp = await client.post("/api/admin/form-schemas", json={"name": "Energy Calculator Form", "schema_data": FORM})
    assert resp.status_code == 409

    resp = await client.post("/api/admin/form-schemas", json={"name": "broken", "schema_data": {"pages": []}})
    assert resp.status_code == 400
    assert resp.json()["errors"]

    resp = await client.post(f"/api/admin/form-schemas/{v1['id']}/versions", json={"description": "v2"})
    assert resp.status_code == 201
    v2 = resp.json()["schema"]
    assert v2["version"] == 2

    assert (await client.get(f"/api/admin/form-schemas/{v1['id']}")).status_code == 404
    assert (await client.get("/api/admin/form-schemas/active")).json()["id"] == v2["id"]
    listed = (await client.get("/api/admin/form-schemas", params={"name": "Energy Calculator Form"})).json()["schemas"]
    assert [s["version"] for s in listed] == [2, 1]

    public = (await client.get("/api/calculator/form-schema")).json()
    assert public["id"] == v2["id"]
    assert public["schema"]["pages"][0]["id"] == "house"

    resp = await client.patch(f"/api/admin/form-schemas/{v2['id']}", json={"description": "kevät"})
    assert resp.json()["schema"]["version"] == 2

    assert (await client.delete(f"/api/admin/form-schemas/{v2['id']}")).json() == {"ok": True}
    assert (await client.get("/api/admin/form-schemas/active")).status_code == 404
    assert (await client.delete(f"/api/admin/form-schemas/{v1['id']}", params={"hard": "true"})).json() == {"ok": True}
    listed = (await client.get("/api/admin/form-schemas")).json()["schemas"]
    assert [s["id"] for s in listed] == [v2["id"]]


async def test_form_schema_document_check(client):
    resp = await client.post(
        "/api/admin/form-schemas/validate",
        json={"schema_data": {"pages": [{"id": "p", "title": "P", "sections": [
            {"id": "s", "title": "S", "fields": [{"id": "x", "type": "select", "label": "X"}]}]}]}},
    )
    body = resp.json()
    assert body["valid"] is False
    assert any("must have options" in e for e in body["errors"])

    resp = await client.post("/api/admin/form-schemas/validate", json={"schema_data": FORM})
    assert resp.json() == {"valid": True, "errors": []}


async def test_calculator_checks_submission_against_live_form(client):
    resp = await client.post("/api/calculator/form-schema/validate", json={"form_data": {}})
    assert resp.status_code == 404

    await client.post("/api/admin/form-schemas", json={"name": "Energy Calculator Form", "schema_data": FORM})
    resp = await client.post(
        "/api/calculator/form-schema/validate", json={"form_data": {"neliot": "5000", "lammitysmuoto": "Kaasu"}}
    )
    assert resp.json() == {
        "valid": False,
        "errors": {
            "neliot": ["Pinta-ala must be at most 1000"],
            "lammitysmuoto": ["Lämmitys has an unknown option"],
        },
    }
    resp = await client.post(
        "/api/calculator/form-schema/validate", json={"form_data": {"neliot": "120", "lammitysmuoto": "Öljy"}}
    )
    assert resp.json() == {"valid": True, "errors": {}}
