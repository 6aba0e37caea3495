from pathlib import Path as FSPath

from fastapi.templating import Jinja2Templates

from .services.calculations import format_currency, format_fi, heating_type_label
from .services.values import to_float

BASE_DIR = FSPath(__file__).resolve().parents[1]
TEMPLATES_DIR = BASE_DIR / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _currency(value) -> str:
    return format_currency(to_float(value))


def _fi_number(value, decimals: int = 0) -> str:
    number = to_float(value)
    if number is None:
        return "-"
    return format_fi(number, decimals)


# Shared by the calculator page and the lead e-mails
templates.env.filters["currency"] = _currency
templates.env.filters["fi_number"] = _fi_number
templates.env.filters["heating_label"] = lambda v: heating_type_label(str(v or "")) or "-"

__all__ = ["BASE_DIR", "TEMPLATES_DIR", "templates"]
