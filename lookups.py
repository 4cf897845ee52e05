"""
Reference data for portal dropdowns.
"""
from datetime import date

FOUNDATIONS = [
    {"id": "cbse", "name": "CBSE"},
    {"id": "icse", "name": "ICSE"},
    {"id": "state-board", "name": "State Board"},
    {"id": "ib", "name": "International Baccalaureate"},
]

PROGRAMS = [
    {"id": "regular", "name": "Regular Program"},
    {"id": "advanced", "name": "Advanced Program"},
    {"id": "foundation", "name": "Foundation Program"},
    {"id": "olympiad", "name": "Olympiad Program"},
]


def academic_years(today: date = None) -> list:
    """Last year through three years ahead, e.g. 2025-2026 .. 2029-2030 in 2026."""
    year = (today or date.today()).year
    years = []
    for start in range(year - 1, year + 4):
        label = f"{start}-{start + 1}"
        years.append({"id": label, "name": label})
    return years
