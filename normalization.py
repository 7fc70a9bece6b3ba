"""
Decoding of client-submitted materials, payment history and photos.

Clients send materials in several historical shapes: a list of objects, a list
of bare names, or a string holding either of those as JSON or as a loosely
quoted literal (single quotes, unquoted keys). Everything here always returns
the canonical shape. Malformed input degrades to empty values and a warning in
the log; required-field checks further down reject the request if something
essential was lost.
"""
import base64
import binascii
import json
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})")
_BARE_KEY = re.compile(r"([{,]\s*)([a-zA-Z_$][a-zA-Z0-9_$]*)\s*:")
_FALSE_STRINGS = {"", "false", "0", "no", "off", "null", "none"}

PHOTO_PREFIX = "data:image/jpeg;base64,"


def to_number(value: Any) -> Optional[float]:
    """Coerce a JSON number or numeric string; None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number) if number.is_integer() else number


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


# ---------- Materials ----------

def parse_materials(raw: Any) -> List[Any]:
    """Turn the raw materials payload into a list, repairing loose literals."""
    if isinstance(raw, str):
        text = raw.strip()
        try:
            raw = json.loads(text)
        except ValueError:
            cleaned = re.sub(r"\s+", " ", text.replace("\n", "").replace("\r", "")).strip()
            cleaned = _BARE_KEY.sub(r'\1"\2":', cleaned.replace("'", '"'))
            try:
                raw = json.loads(cleaned)
            except ValueError as exc:
                logger.warning("Could not parse materials string %r: %s", text, exc)
                raw = []
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Materials is not a list after parsing (%s), ignoring it", type(raw).__name__)
        return []
    return raw


def normalize_material(item: Any) -> Optional[Dict[str, Any]]:
    if isinstance(item, str):
        name = item.strip()
        return {"name": name, "cost": None, "purchasedByAdmin": False} if name else None
    if not isinstance(item, dict):
        if item is not None:
            logger.warning("Dropping material of unsupported type %s: %r", type(item).__name__, item)
        return None

    name = str(item.get("name") or "").strip()
    if not name:
        return None
    purchased = to_bool(item.get("purchasedByAdmin", False))
    cost = None
    raw_cost = item.get("cost")
    if purchased and raw_cost is not None and raw_cost != "":
        cost = to_number(raw_cost)
        if cost is None:
            logger.warning("Material %r has a non-numeric cost %r, storing no cost", name, raw_cost)
    return {"name": name, "cost": cost, "purchasedByAdmin": purchased}


def normalize_materials(raw: Any) -> List[Dict[str, Any]]:
    materials = []
    for item in parse_materials(raw):
        material = normalize_material(item)
        if material is not None:
            materials.append(material)
    return materials


def materials_total_cost(materials: List[Dict[str, Any]]):
    return sum(
        m["cost"] for m in materials
        if m.get("purchasedByAdmin") and m.get("cost") is not None and m["cost"] > 0
    )


# ---------- Payment history ----------

def parse_date(value: Any) -> Optional[datetime]:
    """Midnight of the calendar day ``value`` names, or None. Time and zone are dropped."""
    day = None
    if isinstance(value, datetime):
        day = value.date()
    elif isinstance(value, date):
        day = value
    elif isinstance(value, str):
        match = _ISO_DATE.match(value)
        if match:
            try:
                day = date.fromisoformat(match.group(1))
            except ValueError:
                day = None
    if day is None:
        return None
    return datetime(day.year, day.month, day.day)


def coerce_date(value: Any) -> datetime:
    """Like parse_date, but falls back to today."""
    parsed = parse_date(value)
    if parsed is None:
        if value not in (None, ""):
            logger.warning("Unparseable payment date %r, using today", value)
        today = datetime.now(timezone.utc).date()
        parsed = datetime(today.year, today.month, today.day)
    return parsed


def normalize_payment(entry: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(entry, dict):
        logger.warning("Dropping payment entry of unsupported type %s", type(entry).__name__)
        return None
    amount = to_number(entry.get("amount"))
    if amount is None or amount <= 0:
        return None
    return {
        "date": coerce_date(entry.get("date")),
        "amount": amount,
        "description": str(entry.get("description") or "").strip(),
    }


def normalize_payment_history(raw: Any) -> List[Dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Payment history is not a list (%s), treating it as empty", type(raw).__name__)
        return []
    history = []
    for entry in raw:
        payment = normalize_payment(entry)
        if payment is not None:
            history.append(payment)
    return history


def sum_payments(history: List[Dict[str, Any]]):
    return sum(p.get("amount") or 0 for p in history)


def format_date(value: Any) -> Optional[str]:
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    return value


# ---------- Photos ----------

def decode_photo(value: Any) -> Optional[bytes]:
    """Decode a base64 photo, with or without a data-URI prefix. None when unusable."""
    if not value or not isinstance(value, str):
        return None
    data = value.split(",", 1)[1] if "," in value else value
    try:
        return base64.b64decode(data.strip(), validate=False)
    except (binascii.Error, ValueError) as exc:
        logger.warning("Could not decode photo payload: %s", exc)
        return None


def encode_photo(value: Optional[bytes]) -> Optional[str]:
    if not value:
        return None
    return PHOTO_PREFIX + base64.b64encode(bytes(value)).decode("ascii")
