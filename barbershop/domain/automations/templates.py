"""Message templates for automation rules

Placeholders use the {{name}} syntax and are replaced literally. Anything not
known, or known but without a value for the candidate, is left untouched.
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

from dateutil import parser as date_parser

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")

DEFAULT_CLIENT_NAME = "Cliente"
DEFAULT_BARBERSHOP_NAME = "Nossa Barbearia"
DEFAULT_PROMOTION_DETAILS = "Desconto especial de 20% em qualquer serviço!"
EXPIRY_DAYS = 7


def format_br_date(value: Any) -> Optional[str]:
    """dd/mm/yyyy for dates, datetimes and ISO strings"""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = date_parser.isoparse(value)
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    return str(value)


def build_context(candidate: dict, barbershop_name: Optional[str], today: date) -> dict[str, Optional[str]]:
    days_since_visit = candidate.get("days_since_visit")
    return {
        "client_name": candidate.get("client_name") or DEFAULT_CLIENT_NAME,
        "barbershop_name": barbershop_name or DEFAULT_BARBERSHOP_NAME,
        "appointment_date": format_br_date(candidate.get("appointment_date")),
        "appointment_time": candidate.get("appointment_time"),
        "service_name": candidate.get("service_name"),
        "days_since_visit": str(days_since_visit) if days_since_visit is not None else None,
        "promotion_details": candidate.get("promotion_details"),
        "expiry_date": format_br_date(today + timedelta(days=EXPIRY_DAYS)),
    }


def render_template(
    template: str,
    candidate: dict,
    barbershop_name: Optional[str] = None,
    today: Optional[date] = None,
) -> str:
    context = build_context(candidate, barbershop_name, today or date.today())

    def substitute(match: re.Match) -> str:
        value = context.get(match.group(1))
        return value if value is not None else match.group(0)

    return PLACEHOLDER_PATTERN.sub(substitute, template or "")
