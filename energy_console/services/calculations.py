# energy_console/services/calculations.py
"""Heat pump savings and payback estimate used by the calculator and lead intake."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass

# Constants for calculations
HEAT_LOSS_FACTOR = 17  # W/m² per degree Celsius
TEMPERATURE_DIFFERENCE = 3.2  # average temperature difference
RESIDENT_ENERGY_FACTOR = 1500  # kWh per resident per year
COP_FACTOR = 0.3  # heat pump uses 30% of the energy of traditional heating
ELECTRICITY_COST = 0.12  # €/kWh
INVESTMENT_COST = 15000  # € average installed price
CO2_FACTOR = 0.2  # kg CO2 per kWh

HEATING_TYPE_LABELS = {
    "electric": "Electric Heating",
    "oil": "Oil Heating",
    "gas": "Gas Heating",
    "district": "District Heating",
    "wood": "Wood Heating",
    "other": "Other",
}


@dataclass(slots=True)
class CalculationInputs:
    square_meters: float
    ceiling_height: float
    residents: int
    current_heating_cost: float
    current_heating_type: str = "other"


@dataclass(slots=True)
class CalculationResults:
    annual_energy_need: float
    heat_pump_consumption: float
    heat_pump_cost_annual: float
    annual_savings: float
    five_year_savings: float
    ten_year_savings: float
    payback_period: float
    co2_reduction: float

    def as_dict(self) -> dict:
        return asdict(self)


def calculate_heat_pump_savings(inputs: CalculationInputs) -> CalculationResults:
    building_energy_need = (
        inputs.square_meters * inputs.ceiling_height * HEAT_LOSS_FACTOR * TEMPERATURE_DIFFERENCE
    )
    resident_energy_need = inputs.residents * RESIDENT_ENERGY_FACTOR
    annual_energy_need = building_energy_need + resident_energy_need

    heat_pump_consumption = annual_energy_need * COP_FACTOR
    heat_pump_cost_annual = heat_pump_consumption * ELECTRICITY_COST

    annual_savings = inputs.current_heating_cost - heat_pump_cost_annual

    # zero savings never pays back; losses give a negative period
    payback_period = INVESTMENT_COST / annual_savings if annual_savings != 0 else math.inf

    return CalculationResults(
        annual_energy_need=annual_energy_need,
        heat_pump_consumption=heat_pump_consumption,
        heat_pump_cost_annual=heat_pump_cost_annual,
        annual_savings=annual_savings,
        five_year_savings=annual_savings * 5,
        ten_year_savings=annual_savings * 10,
        payback_period=payback_period,
        co2_reduction=annual_energy_need * CO2_FACTOR,
    )


def _group_thousands(value: str) -> str:
    # fi-FI groups digits with a no-break space
    return value.replace(",", " ")


def format_currency(amount: float) -> str:
    """Whole euros in Finnish style, e.g. ``12 345 €``."""
    if amount is None or not math.isfinite(amount):
        return "–"
    return f"{_group_thousands(f'{round(amount):,}')} €"


def format_number(num: float, decimals: int = 1) -> str:
    return f"{num:.{decimals}f}"


def format_fi(num: float, decimals: int = 0) -> str:
    """Number with Finnish grouping and decimal comma."""
    text = f"{num:,.{decimals}f}"
    return text.replace(",", " ").replace(".", ",")


def heating_type_label(heating_type: str) -> str:
    return HEATING_TYPE_LABELS.get(heating_type, heating_type)
