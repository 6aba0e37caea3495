import pytest
from pydantic import ValidationError

from energy_console.schemas import LeadSubmission, form_errors, step_errors, validate_step

HOUSE = {"squareMeters": 120, "ceilingHeight": "2.5", "constructionYear": "1970-1990", "floors": "2"}
HEATING = {"heatingType": "oil", "annualHeatingCost": 2500}
HOUSEHOLD = {"residents": "4", "hotWaterUsage": "normal"}
CONTACT = {
    "firstName": "Matti",
    "lastName": "Meikäläinen",
    "email": "matti@example.com",
    "phone": "040 123 4567",
    "contactPreference": "email",
    "gdprConsent": True,
}


@pytest.mark.parametrize("step,data", [(1, HOUSE), (2, HEATING), (3, HOUSEHOLD), (4, CONTACT)])
def test_valid_steps(step, data):
    assert step_errors(step, data) is None
    assert validate_step(step, data)


def test_step_errors_are_keyed_by_field():
    errors = step_errors(1, {**HOUSE, "squareMeters": 5, "floors": "4"})
    assert set(errors) == {"squareMeters", "floors"}


def test_unknown_step():
    with pytest.raises(ValueError, match="Invalid step: 7"):
        step_errors(7, {})


@pytest.mark.parametrize(
    "override,field,needle",
    [
        ({"phone": "12345"}, "phone", "Finnish phone number"),
        ({"firstName": "M4tti"}, "firstName", "invalid characters"),
        ({"gdprConsent": False}, "gdprConsent", "privacy policy"),
        ({"email": "not-an-email"}, "email", ""),
    ],
)
def test_contact_rules(override, field, needle):
    errors = step_errors(4, {**CONTACT, **override})
    assert field in errors
    assert any(needle in msg for msg in errors[field])


def test_whole_form():
    assert form_errors({**HOUSE, **HEATING, **HOUSEHOLD, **CONTACT}) is None
    errors = form_errors({**HOUSE, **HEATING, **HOUSEHOLD})
    assert "firstName" in errors and "gdprConsent" in errors


def test_lead_submission_coerces_form_strings():
    body = LeadSubmission.model_validate(
        {"neliot": "120,5", "sahkoposti": "a@example.com", "huonekorkeus": "", "henkilomaara": "3 henkeä",
         "kokonaismenekki": "2000"}
    )
    assert body.neliot == 120.5
    assert body.huonekorkeus is None
    assert body.henkilomaara == 3
    assert body.model_extra == {"kokonaismenekki": "2000"}


@pytest.mark.parametrize(
    "body",
    [{"sahkoposti": "a@example.com"}, {"neliot": 100}, {"neliot": 0, "sahkoposti": "a@example.com"},
     {"neliot": 100, "sahkoposti": "nope"}],
)
def test_lead_submission_requires_area_and_email(body):
    with pytest.raises(ValidationError):
        LeadSubmission.model_validate(body)
