import pytest

from energy_console.models import PdfShortcode
from energy_console.services import email_templates, formulas, pdf_shortcodes, shortcodes
from energy_console.services.errors import ConflictError, NotFoundError, ValidationFailed
from energy_console.services.pdf_shortcodes import PdfShortcodeProcessor, fi_number, format_value

NBSP = "\u00a0"


# ---------------------------------------------------------------------------
# {{name}} content shortcodes
# ---------------------------------------------------------------------------

async def test_content_shortcodes_fill_from_context(db):
    await shortcodes.create_shortcode(db, {"name": "customer.name", "category": "customer"})
    await shortcodes.create_shortcode(
        db, {"name": "company.phone", "category": "company", "replacement_value": "010 123 4567"}
    )
    out = await shortcodes.process_shortcodes(
        db,
        "Hei {{customer.name}}, soita {{company.phone}}. {{unknown}}",
        {"customer": {"name": "Matti"}},
    )
    assert out == "Hei Matti, soita 010 123 4567. {{unknown}}"


async def test_shortcode_validation_and_soft_delete(db):
    with pytest.raises(ValidationFailed):
        await shortcodes.create_shortcode(db, {"name": "bad name", "category": "customer"})
    with pytest.raises(ValidationFailed):
        await shortcodes.create_shortcode(db, {"name": "ok", "category": "nope"})

    sc = await shortcodes.create_shortcode(db, {"name": "results.total", "category": "results"})
    with pytest.raises(ConflictError):
        await shortcodes.create_shortcode(db, {"name": "results.total", "category": "results"})

    await shortcodes.delete_shortcode(db, sc.id)
    with pytest.raises(NotFoundError):
        await shortcodes.get_shortcode(db, sc.id)
    assert await shortcodes.list_shortcodes(db) == []

    again = await shortcodes.create_shortcode(db, {"name": "results.total", "category": "results"})
    assert again.id == sc.id
    assert again.is_active


# ---------------------------------------------------------------------------
# [calc:name] display shortcodes
# ---------------------------------------------------------------------------

def test_parse_and_validate_display_content():
    parsed = shortcodes.parse_display_content("A [calc:annual-savings] B [lookup:price]")
    assert [(p.type, p.name) for p in parsed] == [("calc", "annual-savings"), ("lookup", "price")]

    assert shortcodes.validate_shortcode_syntax("[calc:ok name-1]")["is_valid"]
    report = shortcodes.validate_shortcode_syntax("[calc:bad$name] [calc:" + "x" * 51 + "]")
    assert not report["is_valid"]
    assert len(report["errors"]) == 2


def test_format_fi_number():
    assert shortcodes.format_fi_number(13600.0) == f"13{NBSP}600"
    assert shortcodes.format_fi_number(2.5) == "2,5"
    assert shortcodes.format_fi_number(1.23456) == "1,235"


async def test_display_content_renders_formulas(db):
    await formulas.create_formula(db, {"name": "Energiantarve kwh", "formula_text": "[field:neliot] * 100"})
    await formulas.create_formula(db, {"name": "Säästö", "formula_text": "1000 + 234.5", "unit": "€"})

    out = await shortcodes.process_display_content(
        db, "Tarve [calc:energiantarve-kwh], säästö [calc:Säästö].", {"neliot": "136"}
    )
    assert out == f"Tarve 13{NBSP}600 kW, säästö 1{NBSP}234,5 €."


async def test_display_content_errors_render_inline(db):
    await formulas.create_formula(db, {"name": "needs-field", "formula_text": "[field:neliot] * 2"})
    out = await shortcodes.process_display_content(db, "[calc:missing] [lookup:price] [calc:needs-field]", {})
    assert "[Error: Formula 'missing' not found]" in out
    assert "[Error: Lookup shortcodes are not supported ('price')]" in out
    assert "[Error: Field 'neliot' is required" in out


async def test_display_content_without_shortcodes_is_untouched(db):
    assert await shortcodes.process_display_content(db, "plain text", {}) == "plain text"


async def test_available_shortcodes(db):
    await formulas.create_formula(db, {"name": "Annual Savings", "formula_text": "1 + 1"})
    listed = await shortcodes.available_shortcodes(db)
    assert listed[0]["shortcode"] == "[calc:annual-savings]"
    assert listed[0]["description"] == "No description available"


# ---------------------------------------------------------------------------
# PDF shortcodes
# ---------------------------------------------------------------------------

def test_fi_number_and_format_value():
    assert fi_number(1234.5) == f"1{NBSP}234,5"
    assert fi_number(-3) == "−3"
    assert format_value(1902.4, "currency") == f"1{NBSP}902{NBSP}€"
    assert format_value("12.345", "percentage") == "12,3 %"
    assert format_value(5, "number", {"suffix": " kW"}) == "5 kW"
    assert format_value("2024-03-05T10:00:00Z", "date") == "5.3.2024"
    assert format_value("2024-03-05", "date", {"format": "long"}) == "5. maaliskuuta 2024"
    assert format_value("2024-03-05", "date", {"format": "iso"}) == "2024-03-05"
    assert format_value(None, "text") == ""
    assert format_value("n/a", "currency") == "n/a"


LEAD = {
    "id": "abcdef123456",
    "first_name": "Matti",
    "full_name": "Matti Meikäläinen",
    "street_address": "Kotikatu 1",
    "city": "Tampere",
    "form_data": {"lammitysmuoto": "Oil", "vesikiertoinen": 2500, "neliot": 100},
    "calculation_results": {"annual_savings": 1902.4},
}


def _sc(code, source_type, source_value, format_type=None, fallback=None, options=None):
    return PdfShortcode(code=code, name=code, source_type=source_type, source_value=source_value,
                        format_type=format_type, fallback_value=fallback, format_options=options)


def test_pdf_processor_sources():
    processor = PdfShortcodeProcessor(
        LEAD,
        shortcodes=[
            _sc("{{nimi}}", "field", "first_name"),
            _sc("{{saasto}}", "field", "annual_savings", "currency"),
            _sc("{{saasto10}}", "formula", "annual_savings * 10", "currency"),
            _sc("{{lammitys}}", "special", "translate_heating_type"),
            _sc("{{osoite}}", "special", "full_address"),
            _sc("{{luokka}}", "special", "efficiency_rating"),
            _sc("{{yritys}}", "static", "Lämpö Oy"),
            _sc("{{puhelin}}", "field", "phone", fallback="-"),
            _sc("{{rikki}}", "formula", "missing_var * 2", fallback="?"),
        ],
    )
    template = (
        "{{nimi}}|{{saasto}}|{{saasto10}}|{{lammitys}}|{{osoite}}|{{luokka}}|{{yritys}}|{{puhelin}}|{{rikki}}|{{muu}}"
    )
    assert processor.render(template) == (
        f"Matti|1{NBSP}902{NBSP}€|19{NBSP}024{NBSP}€|Öljylämmitys|Kotikatu 1, Tampere|A+|Lämpö Oy|-|?|{{{{muu}}}}"
    )


def test_pdf_custom_values_win():
    processor = PdfShortcodeProcessor(LEAD, custom_values={"first_name": "Maija"},
                                      shortcodes=[_sc("{{nimi}}", "field", "first_name")])
    assert processor.render("{{nimi}}") == "Maija"


def test_calculation_number_uses_lead_id():
    processor = PdfShortcodeProcessor(LEAD, shortcodes=[_sc("{{nro}}", "special", "calculation_number")])
    assert processor.render("{{nro}}").endswith("-ABCDEF")


def test_validate_pdf_template():
    report = pdf_shortcodes.validate_pdf_template("{{ a }} {{b}}", ["{{a}}"])
    assert report == {"is_valid": False, "used": ["{{a}}", "{{b}}"], "unknown": ["{{b}}"]}


async def test_pdf_shortcode_crud(db):
    sc = await pdf_shortcodes.create_pdf_shortcode(
        db, {"code": "asiakas_nimi", "name": "Asiakkaan nimi", "source_type": "special", "source_value": "full_name"}
    )
    assert sc.code == "{{asiakas_nimi}}"
    with pytest.raises(ConflictError):
        await pdf_shortcodes.create_pdf_shortcode(db, {"code": "{{ asiakas_nimi }}", "name": "x"})
    with pytest.raises(ValidationFailed):
        await pdf_shortcodes.create_pdf_shortcode(
            db, {"code": "x", "name": "x", "source_type": "special", "source_value": "rm_rf"}
        )
    with pytest.raises(ValidationFailed):
        await pdf_shortcodes.create_pdf_shortcode(db, {"code": "bad code!", "name": "x"})

    processor = PdfShortcodeProcessor(LEAD)
    assert await processor.process(db, "Hyvä {{asiakas_nimi}}") == "Hyvä Matti Meikäläinen"


# ---------------------------------------------------------------------------
# E-mail templates
# ---------------------------------------------------------------------------

async def test_email_template_render_and_versioning(db):
    await shortcodes.create_shortcode(db, {"name": "customer.first_name", "category": "customer"})
    await shortcodes.create_shortcode(db, {"name": "results.annual_savings_formatted", "category": "results"})
    template = await email_templates.create_email_template(
        db,
        {
            "name": "Tulokset",
            "subject": "Hei {{customer.first_name}}",
            "content": "Säästät {{results.annual_savings_formatted}} vuodessa.",
            "category": "results",
        },
    )
    context = {
        "customer": {"first_name": "Matti"},
        "results": {"annual_savings_formatted": f"1{NBSP}902 €"},
    }
    subject, body = await email_templates.render_email_template(db, template, context)
    assert subject == "Hei Matti"
    assert body == f"Säästät 1{NBSP}902 € vuodessa."

    updated = await email_templates.update_email_template(db, template.id, {"subject": "Moi"})
    assert updated.version == 2
    found = await email_templates.template_for_category(db, "results")
    assert found.id == template.id


async def test_email_template_validation(db):
    with pytest.raises(ValidationFailed):
        await email_templates.create_email_template(db, {"name": "x", "subject": "", "content": "b"})
    with pytest.raises(ValidationFailed):
        await email_templates.create_email_template(
            db, {"name": "x", "subject": "s", "content": "b", "category": "spam"}
        )


def test_lead_shortcode_context_without_lead():
    ctx = email_templates.lead_shortcode_context(None)
    assert ctx["customer"]["name"] == ""
    assert ctx["company"]["name"]
