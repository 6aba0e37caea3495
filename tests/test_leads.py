import csv
import io

import pytest

from energy_console.models import Lead
from energy_console.services import leads
from energy_console.services.errors import NotFoundError, RateLimited, ValidationFailed
from energy_console.services.leads import RequestMeta, build_lead, leads_to_csv, split_name, submit_lead

BODY = {
    "neliot": "100",
    "huonekorkeus": "2,5",
    "henkilomaara": 2,
    "vesikiertoinen": 2500,
    "lammitysmuoto": "Puulämmitys",
    "sahkoposti": "matti@example.com",
    "nimi": "Matti Meikäläinen",
    "puhelinnumero": "0401234567",
    "paikkakunta": "Tampere",
    "laskennallinenenergiantarve": 16600,
    "gdpr_consent": True,
}


def test_split_name():
    assert split_name({"nimi": "Anna Maria Virtanen"}) == ("Anna", "Maria Virtanen")
    assert split_name({"first_name": "Liisa", "nimi": "X Y"}) == ("Liisa", "Y")
    assert split_name({}) == ("", "")


def test_build_lead_maps_columns_and_form_data():
    lead = build_lead(BODY, RequestMeta(ip_address="1.2.3.4", source_page="https://example.com/laskuri"))
    assert (lead.first_name, lead.last_name) == ("Matti", "Meikäläinen")
    assert lead.email == "matti@example.com"
    assert lead.city == "Tampere"
    assert lead.status == "new"
    assert lead.gdpr_consent is True
    assert lead.ip_address == "1.2.3.4"

    form = lead.form_data
    assert form["neliot"] == 100.0
    assert form["huonekorkeus"] == 2.5
    assert form["source_page"] == "https://example.com/laskuri"
    assert "consent_timestamp" in form
    assert "nimi" not in form
    # custom card fields are kept
    assert form["laskennallinenenergiantarve"] == 16600


def test_build_lead_calculates_savings_and_metrics():
    results = build_lead(BODY).calculation_results
    assert results["annual_savings"] == pytest.approx(1902.4)
    assert results["payback_period"] == pytest.approx(15000 / 1902.4)
    assert results["metrics"]["strategy"] == "wood"


def test_no_savings_payback_is_stored_as_null():
    lead = build_lead({**BODY, "neliot": "0", "henkilomaara": "0", "vesikiertoinen": 0})
    assert lead.calculation_results["payback_period"] is None


def test_losses_store_negative_payback():
    lead = build_lead({**BODY, "vesikiertoinen": 0})
    assert lead.calculation_results["payback_period"] < 0


@pytest.mark.parametrize("missing", ["neliot", "sahkoposti"])
def test_build_lead_requires_area_and_email(missing):
    with pytest.raises(ValidationFailed):
        build_lead({**BODY, missing: ""})


async def test_submit_lead_is_rate_limited_per_ip(db, monkeypatch):
    monkeypatch.setattr(leads.lead_rate_limiter, "max_requests", 2)
    meta = RequestMeta(ip_address="9.9.9.9")
    first = await submit_lead(db, BODY, meta)
    await submit_lead(db, BODY, meta)
    with pytest.raises(RateLimited):
        await submit_lead(db, BODY, meta)
    await submit_lead(db, BODY, RequestMeta(ip_address="8.8.8.8"))

    stored = await leads.get_lead(db, first.id)
    assert stored.created_at is not None


async def _seed(db):
    rows = [
        build_lead({**BODY, "nimi": "Matti Meikäläinen"}),
        build_lead({**BODY, "nimi": "Liisa Virtanen", "sahkoposti": "liisa@example.com", "paikkakunta": "Oulu"}),
        build_lead({**BODY, "nimi": "Pekka Korhonen", "sahkoposti": "pekka@example.com"}),
    ]
    db.add_all(rows)
    await db.commit()
    return rows


async def test_list_leads_search_status_and_paging(db):
    matti, liisa, pekka = await _seed(db)
    await leads.update_lead(db, liisa.id, status="contacted", notes="Soitettu")

    page = await leads.list_leads(db, page_size=2)
    assert page["total"] == 3 and page["pages"] == 2 and len(page["items"]) == 2

    found = await leads.list_leads(db, search="oulu")
    assert [l.id for l in found["items"]] == [liisa.id]

    contacted = await leads.list_leads(db, status="contacted")
    assert [l.id for l in contacted["items"]] == [liisa.id]

    with pytest.raises(ValidationFailed):
        await leads.list_leads(db, status="lost")


async def test_bulk_operations(db):
    rows = await _seed(db)
    ids = [r.id for r in rows]
    assert await leads.bulk_update_status(db, ids[:2], "qualified") == 2
    assert (await leads.list_leads(db, status="qualified"))["total"] == 2
    assert await leads.bulk_update_status(db, [], "qualified") == 0
    with pytest.raises(ValidationFailed):
        await leads.bulk_update_status(db, ids, "archived")

    assert await leads.bulk_delete(db, ids[:1]) == 1
    assert (await leads.list_leads(db))["total"] == 2


async def test_get_missing_lead(db):
    with pytest.raises(NotFoundError):
        await leads.get_lead(db, "missing")


def test_csv_export_has_dynamic_columns():
    one = Lead(id="1", first_name="A", last_name="B", email="a@x.fi", phone="", status="new",
               form_data={"neliot": 100, "extra": {"k": "v"}}, calculation_results={"annual_savings": 10})
    two = Lead(id="2", first_name="C", last_name="D", email="c@x.fi", phone="", status="new",
               form_data={"lisatieto": ["a", "b"]}, calculation_results={})
    rows = list(csv.reader(io.StringIO(leads_to_csv([one, two]))))
    header = rows[0]
    assert header[: len(leads.CSV_FIXED_COLUMNS)] == leads.CSV_FIXED_COLUMNS
    assert header[len(leads.CSV_FIXED_COLUMNS):] == ["neliot", "extra", "lisatieto"]
    assert rows[1][header.index("annual_savings")] == "10"
    assert rows[1][header.index("extra")] == "k=v"
    assert rows[2][header.index("lisatieto")] == "a, b"
    assert rows[2][header.index("neliot")] == ""


async def test_export_leads_csv_filters(db):
    await _seed(db)
    text = await leads.export_leads_csv(db, search="pekka")
    rows = list(csv.reader(io.StringIO(text)))
    assert len(rows) == 2
    assert rows[1][rows[0].index("email")] == "pekka@example.com"
