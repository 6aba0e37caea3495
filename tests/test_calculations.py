import math

import pytest

from energy_console.services.calculations import (
    CalculationInputs,
    calculate_heat_pump_savings,
    format_currency,
    format_fi,
    heating_type_label,
)
from energy_console.services.metrics import NormalizedLead, compute_metrics, pick_strategy
from energy_console.services.values import is_blank, to_float, to_int

NBSP = "\u00a0"


def _inputs(**overrides):
    values = dict(
        square_meters=100,
        ceiling_height=2.5,
        residents=2,
        current_heating_cost=2500,
        current_heating_type="wood",
    )
    values.update(overrides)
    return CalculationInputs(**values)


def test_reference_household():
    r = calculate_heat_pump_savings(_inputs())
    assert r.annual_energy_need == pytest.approx(16600)
    assert r.heat_pump_consumption == pytest.approx(4980)
    assert r.heat_pump_cost_annual == pytest.approx(597.6)
    assert r.annual_savings == pytest.approx(1902.4)
    assert r.five_year_savings == pytest.approx(9512)
    assert r.ten_year_savings == pytest.approx(19024)
    assert r.payback_period == pytest.approx(15000 / 1902.4)
    assert r.co2_reduction == pytest.approx(3320)


def test_no_savings_means_no_payback():
    r = calculate_heat_pump_savings(_inputs(square_meters=0, residents=0, current_heating_cost=0))
    assert r.annual_savings == 0
    assert math.isinf(r.payback_period)


def test_losses_give_negative_payback():
    r = calculate_heat_pump_savings(_inputs(current_heating_cost=100))
    assert r.annual_savings == pytest.approx(-497.6)
    assert r.payback_period == pytest.approx(15000 / -497.6)
    assert r.payback_period < 0


def test_results_as_dict_has_every_figure():
    data = calculate_heat_pump_savings(_inputs()).as_dict()
    assert set(data) == {
        "annual_energy_need", "heat_pump_consumption", "heat_pump_cost_annual", "annual_savings",
        "five_year_savings", "ten_year_savings", "payback_period", "co2_reduction",
    }


def test_format_currency():
    assert format_currency(1902.4) == f"1{NBSP}902 €"
    assert format_currency(12345678) == f"12{NBSP}345{NBSP}678 €"
    assert format_currency(math.inf) == "–"


def test_format_fi():
    assert format_fi(1234.5, 1) == f"1{NBSP}234,5"
    assert format_fi(12) == "12"


def test_heating_type_label_falls_back_to_raw_value():
    assert heating_type_label("oil") == "Oil Heating"
    assert heating_type_label("geothermal") == "geothermal"


@pytest.mark.parametrize(
    "raw,expected",
    [("12,5", 12.5), (" 1 200 ", 1200.0), (3, 3.0), ("", None), ("abc", None), (True, None)],
)
def test_to_float(raw, expected):
    assert to_float(raw) == expected


def test_to_int_and_blank():
    assert to_int("2,9") == 2
    assert to_int(None, 5) == 5
    assert is_blank("  ")
    assert is_blank({})
    assert not is_blank(0)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "heating,strategy",
    [("Öljylämmitys", "oil"), ("Öljy + puu", "oilwood"), ("Kaasulämmitys", "gas"),
     ("Puulämmitys", "wood"), ("Sähkö", "oil")],
)
def test_strategy_selection(heating, strategy):
    assert pick_strategy(NormalizedLead(heating_type=heating)).id == strategy


def test_oil_metrics_derive_liters_from_energy_need():
    metrics = compute_metrics(NormalizedLead.from_form_data(
        {"lammitysmuoto": "Öljylämmitys", "laskennallinenenergiantarve": "20000"}
    ))
    assert metrics["strategy"] == "oil"
    assert metrics["current"]["consumption"] == {"liters": 2000}
    assert metrics["current"]["cost"]["year1"] == 2600
    assert metrics["current"]["cost"]["year10"] == 26000
    assert metrics["current"]["co2"]["year"] == 5320
    assert metrics["new_system"]["electricity_kwh"] == 5263
    assert metrics["new_system"]["cost"]["year1"] == 789
    assert metrics["new_system"]["co2_year"] == 953


def test_wood_metrics_have_no_current_emissions():
    metrics = compute_metrics(NormalizedLead.from_form_data(
        {"lammitysmuoto": "Puulämmitys", "laskennallinenenergiantarve": 15000,
         "kokonaismenekki": "12", "menekinhintavuosi": "1 100"}
    ))
    assert metrics["strategy"] == "wood"
    assert metrics["current"]["co2"]["year"] == 0
    assert metrics["current"]["consumption"] == {"puumotti": 12}
    assert metrics["current"]["cost"]["year1"] == 1100
