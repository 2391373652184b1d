"""CSV normalization utilities for completion feed imports"""
import re
import unicodedata
from datetime import datetime, time, timezone, tzinfo
from typing import Dict, List, Optional, Tuple

from email_validator import validate_email, EmailNotValidError


COLUMN_ALIASES: Dict[str, List[str]] = {
    "account_number": ["account_number", "account", "account_num", "acct", "acct_number", "account_no", "accountnumber", "member_number"],
    "customer_email": ["customer_email", "email", "email_address", "e_mail", "mail", "customeremail"],
    "external_id": ["external_id", "externalid", "ext_id", "reference_id", "confirmation_number", "application_id"],
    "completion_type": ["completion_type", "type", "product", "product_type", "account_type"],
    "completion_date": ["completion_date", "date", "completed", "completed_at", "completed_date", "open_date", "created", "created_date"],
    "handoff_token": ["handoff_token", "token", "isf_ref", "tracking_token", "ref"],
    "first_name": ["first_name", "firstname", "fname", "given_name"],
    "last_name": ["last_name", "lastname", "lname", "surname", "family_name"],
    "phone": ["phone", "phone_number", "telephone", "mobile", "cell"],
    "address": ["address", "street", "address1", "street_address"],
    "city": ["city", "town"],
    "state": ["state", "province", "region"],
    "zip": ["zip", "zipcode", "zip_code", "postal_code", "postcode"],
}

REQUIRED_FIELDS = ["account_number"]

DATE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%B %d, %Y",
]


def normalize_to_halfwidth(text: str) -> str:
    return unicodedata.normalize("NFKC", text)


def normalize_column_name(name: str) -> str:
    normalized = normalize_to_halfwidth(name).lower()
    return re.sub(r"[^a-z0-9]", "", normalized)


NORMALIZED_ALIASES: Dict[str, List[str]] = {
    canonical: [normalize_column_name(a) for a in aliases]
    for canonical, aliases in COLUMN_ALIASES.items()
}


def map_column_name(raw_name: str) -> Tuple[Optional[str], float]:
    """Suggest a canonical field for a header: 1.0 for an exact alias, 0.8 for a substring hit."""
    normalized = normalize_column_name(raw_name)
    if not normalized:
        return None, 0.0

    for canonical, aliases in NORMALIZED_ALIASES.items():
        if normalized in aliases:
            return canonical, 1.0

    if len(normalized) <= 3:
        return None, 0.0

    for canonical, aliases in NORMALIZED_ALIASES.items():
        for alias in aliases:
            if len(alias) > 3 and (alias in normalized or normalized in alias):
                return canonical, 0.8

    return None, 0.0


def normalize_email(email: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (normalized email, warning). Invalid addresses come back as None with a warning."""
    email = normalize_to_halfwidth(email).strip().lower()
    if not email:
        return None, None
    try:
        validated = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        return None, f"invalid customer_email '{email}': {e}"
    return validated.normalized.lower(), None


def normalize_phone(phone: str) -> str:
    phone = normalize_to_halfwidth(phone).strip()
    digits = re.sub(r"[^\d]", "", phone)
    if phone.startswith("+") and digits:
        return "+" + digits
    return digits


def parse_completion_date(value: str, tz: tzinfo = timezone.utc) -> Optional[datetime]:
    """Parse a completion date in one of the common feed formats, returned in UTC.

    Values without an offset are read as wall-clock time in ``tz``. A bare
    date means "some time that day" and resolves to the end of the day.
    """
    value = normalize_to_halfwidth(value).strip()
    if not value:
        return None

    parsed = None
    has_time = ":" in value
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if not has_time:
        parsed = datetime.combine(parsed.date(), time.max)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(timezone.utc)


def normalize_text(text: str) -> str:
    return normalize_to_halfwidth(text).strip()
