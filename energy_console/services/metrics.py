# energy_console/services/metrics.py
"""Per-heating-type cost/consumption/CO2 metrics for the results card and PDF report."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from energy_console.services.values import to_float


@dataclass(slots=True)
class LookupContext:
    electricity_price: float = 0.15  # €/kWh
    oil_price: float = 1.3  # €/L
    gas_price_per_mwh: float = 55.0  # €/MWh
    co2_electricity_per_kwh: float = 0.181  # kg/kWh
    co2_oil_per_liter: float = 2.66  # kg/L
    co2_gas_per_kwh: float = 0.201  # kg/kWh


DEFAULT_LOOKUPS = LookupContext()
HEAT_PUMP_SCOP = 3.8


@dataclass(slots=True)
class NormalizedLead:
    heating_type: str = ""  # lammitysmuoto
    energy_need_kwh: float = 0.0  # laskennallinenenergiantarve
    total_consumption: Optional[float] = None  # kokonaismenekki
    annual_cost: Optional[float] = None  # menekinhintavuosi
    oil_price: Optional[float] = None

    @classmethod
    def from_form_data(cls, data: dict) -> "NormalizedLead":
        return cls(
            heating_type=str(data.get("lammitysmuoto") or ""),
            energy_need_kwh=to_float(data.get("laskennallinenenergiantarve"), 0.0) or 0.0,
            total_consumption=to_float(data.get("kokonaismenekki")),
            annual_cost=to_float(data.get("menekinhintavuosi")),
            oil_price=to_float(data.get("oilPrice")),
        )


@dataclass(slots=True)
class StrategyBasics:
    annual_current_cost: int
    consumption: dict
    current_co2_year: int
    maintenance_yearly: int


@dataclass(slots=True)
class Strategy:
    id: str
    matches: Callable[[NormalizedLead], bool]
    compute: Callable[[NormalizedLead, LookupContext], StrategyBasics]
    pdf_rows: list = field(default_factory=list)


def _ht(n: NormalizedLead) -> str:
    return (n.heating_type or "").lower()


def _oil_basics(n: NormalizedLead, lookups: LookupContext) -> StrategyBasics:
    liters = n.total_consumption if n.total_consumption is not None else n.energy_need_kwh / 10
    oil_price = n.oil_price if n.oil_price is not None else lookups.oil_price
    annual_cost = n.annual_cost if n.annual_cost is not None else liters * oil_price
    return StrategyBasics(
        annual_current_cost=round(annual_cost or 0),
        consumption={"liters": round(liters or 0)},
        current_co2_year=round((liters or 0) * lookups.co2_oil_per_liter),
        maintenance_yearly=200,
    )


def _gas_basics(n: NormalizedLead, lookups: LookupContext) -> StrategyBasics:
    return StrategyBasics(
        annual_current_cost=round(n.annual_cost or 0),
        consumption={"m3": round(n.total_consumption or 0)},
        current_co2_year=round(n.energy_need_kwh * lookups.co2_gas_per_kwh),
        maintenance_yearly=300,
    )


def _wood_basics(n: NormalizedLead, lookups: LookupContext) -> StrategyBasics:
    return StrategyBasics(
        annual_current_cost=round(n.annual_cost or 0),
        consumption={"puumotti": round(n.total_consumption or 0)},
        current_co2_year=0,
        maintenance_yearly=200,
    )


_OIL_ROWS = [
    ("consumption", "Öljyn kulutus", "L/vuosi"),
    ("price", "Öljyn hinta", "€/litra"),
    ("maintenance", "Huoltokustannus", "€/vuosi"),
    ("co2", "CO₂-päästöt", "kg/vuosi"),
]

STRATEGIES: list[Strategy] = [
    Strategy(
        id="oilwood",
        matches=lambda n: "öljy" in _ht(n) and "puu" in _ht(n),
        compute=_oil_basics,
        pdf_rows=_OIL_ROWS,
    ),
    Strategy(
        id="oil",
        matches=lambda n: "öljy" in _ht(n) and "puu" not in _ht(n),
        compute=_oil_basics,
        pdf_rows=_OIL_ROWS,
    ),
    Strategy(
        id="gas",
        matches=lambda n: "kaasu" in _ht(n),
        compute=_gas_basics,
        pdf_rows=[
            ("consumption", "Kaasun kulutus", "m³/vuosi"),
            ("price", "Kaasun hinta", "€/MWh"),
            ("maintenance", "Huoltokustannus", "€/vuosi"),
            ("co2", "CO₂-päästöt", "kg/vuosi"),
        ],
    ),
    Strategy(
        id="wood",
        matches=lambda n: "puu" in _ht(n) and "öljy" not in _ht(n),
        compute=_wood_basics,
        pdf_rows=[
            ("consumption", "Puun menekki", "puumottia/vuosi"),
            ("price", "Puun hinta", "€/vuosi"),
            ("maintenance", "Huoltokustannus", "€/vuosi"),
            ("co2", "CO₂-päästöt", "kg/vuosi"),
        ],
    ),
]


def pick_strategy(n: NormalizedLead) -> Strategy:
    for strategy in STRATEGIES:
        if strategy.matches(n):
            return strategy
    return STRATEGIES[1]  # oil


def compute_metrics(n: NormalizedLead, lookups: LookupContext = DEFAULT_LOOKUPS) -> dict:
    strategy = pick_strategy(n)
    basics = strategy.compute(n, lookups)

    current_year1 = basics.annual_current_cost
    new_kwh = round(n.energy_need_kwh / HEAT_PUMP_SCOP)
    new_year1 = round(new_kwh * lookups.electricity_price)

    return {
        "strategy": strategy.id,
        "current": {
            "cost": {"year1": current_year1, "year5": round(current_year1 * 5), "year10": round(current_year1 * 10)},
            "consumption": basics.consumption,
            "co2": {"year": basics.current_co2_year},
            "maintenance_yearly": basics.maintenance_yearly,
        },
        "new_system": {
            "cost": {"year1": new_year1, "year5": round(new_year1 * 5), "year10": round(new_year1 * 10)},
            "electricity_kwh": new_kwh,
            "co2_year": round(new_kwh * lookups.co2_electricity_per_kwh),
        },
    }
