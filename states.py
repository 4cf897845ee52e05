"""
School-ID derivation.
A school ID is the state abbreviation, the last two digits of the academic-year
start, and a two-digit sequence number: ("Telangana", "2025-2026", "7") -> "TS2507".
"""
import re
from types import MappingProxyType

INDIAN_STATES = MappingProxyType({
    "Andhra Pradesh": "AP", "Arunachal Pradesh": "AR", "Assam": "AS", "Bihar": "BR",
    "Chhattisgarh": "CG", "Goa": "GA", "Gujarat": "GJ", "Haryana": "HR",
    "Himachal Pradesh": "HP", "Jharkhand": "JH", "Karnataka": "KA", "Kerala": "KL",
    "Madhya Pradesh": "MP", "Maharashtra": "MH", "Manipur": "MN", "Meghalaya": "ML",
    "Mizoram": "MZ", "Nagaland": "NL", "Odisha": "OD", "Punjab": "PB",
    "Rajasthan": "RJ", "Sikkim": "SK", "Tamil Nadu": "TN", "Telangana": "TS",
    "Tripura": "TR", "Uttar Pradesh": "UP", "Uttarakhand": "UK", "West Bengal": "WB",
    # Union territories
    "Andaman & Nicobar Islands": "AN", "Chandigarh": "CH",
    "Dadra & Nagar Haveli and Daman & Diu": "DN", "Delhi": "DL",
    "Jammu & Kashmir": "JK", "Ladakh": "LA", "Lakshadweep": "LD", "Puducherry": "PY",
})

_YEAR_START = re.compile(r"^\s*(\d{4})\s*(?:-.*)?$")


def academic_year_suffix(academic_year) -> str | None:
    """'2025-2026' -> '25'. None when the start year is missing or not four digits."""
    if academic_year is None:
        return None
    match = _YEAR_START.match(str(academic_year))
    if not match:
        return None
    return match.group(1)[-2:]


def normalize_school_number(value) -> int | None:
    """Keep the first two digits of the value; valid range is 1..99.

    '7' -> 7, 'No. 07' -> 7, '123' -> 12, 7.5 -> 75, '0' -> None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)  # spreadsheet cells arrive as 7.0
    digits = re.sub(r"\D", "", str(value))[:2]
    if not digits:
        return None
    number = int(digits)
    if number < 1 or number > 99:
        return None
    return number


def derive_school_id(state, academic_year, school_number, states=INDIAN_STATES) -> str | None:
    """Compose the canonical school ID, or None if any part is invalid."""
    abbr = states.get(str(state).strip()) if state else None
    yy = academic_year_suffix(academic_year)
    nn = normalize_school_number(school_number)
    if not abbr or yy is None or nn is None:
        return None
    return f"{abbr}{yy}{nn:02d}"
