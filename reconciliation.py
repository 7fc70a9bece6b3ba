"""
Financial reconciliation for customer records.

These functions take raw request payloads plus the stored record and return
the fields to persist, with paymentPaid, paymentDue, totalAmount and
materialsTotalCost recomputed so that:

* paymentPaid is the sum of paymentHistory whenever the history is non-empty
* paymentDue is max(0, totalAmount - paymentPaid)
* totalAmount excludes materials; a zero or missing total is derived as
  paymentPaid + paymentDue
* materialsTotalCost sums the costs of materials bought by the admin

Nothing here touches the database.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as SchemaError

from errors import ConflictError, ValidationError
from normalization import (
    coerce_date,
    decode_photo,
    materials_total_cost,
    normalize_material,
    normalize_materials,
    normalize_payment_history,
    parse_date,
    sum_payments,
    to_number,
)
from schemas import User

logger = logging.getLogger(__name__)

AMOUNT_FIELDS = ("totalAmount", "paymentPaid", "paymentDue")
TEXT_FIELDS = ("name", "mobile", "area", "address", "jobDetail", "completionStatus", "workStatus")
PHOTO_FIELDS = ("housePhoto", "ownerPhoto")

SELF_FIELDS = ("name", "mobile", "area", "address")
ADMIN_FIELDS = SELF_FIELDS + (
    "workStatus", "jobDetail", "completionStatus", "dueDate",
    "totalAmount", "paymentPaid", "paymentDue", "paymentHistory",
    "materials", "housePhoto", "ownerPhoto",
)


def allowed_fields(role: Optional[str]) -> Tuple[str, ...]:
    return ADMIN_FIELDS if role == "admin" else SELF_FIELDS


def filter_patch(patch: Dict[str, Any], role: Optional[str]) -> Dict[str, Any]:
    """Keep only the fields the caller's role may change; the rest are ignored."""
    allowed = allowed_fields(role)
    dropped = [k for k in patch if k not in allowed]
    if dropped:
        logger.info("Ignoring fields not editable by %s: %s", role, ", ".join(sorted(dropped)))
    return {k: v for k, v in patch.items() if k in allowed}


def _amount(value: Any, field: str, errors: List[str]):
    if value is None or value == "":
        return 0
    number = to_number(value)
    if number is None:
        errors.append(f"{field} must be a number")
        return 0
    return number


def _due_date(value: Any, errors: List[str]):
    if value is None or value == "":
        return None
    parsed = parse_date(value)
    if parsed is None:
        errors.append("dueDate must be a YYYY-MM-DD date")
    return parsed


def check_non_negative(values: Dict[str, Any], errors: List[str]) -> None:
    labels = {"totalAmount": "Total amount", "paymentPaid": "Payment paid", "paymentDue": "Payment due"}
    for field in AMOUNT_FIELDS:
        if field in values and values[field] is not None and values[field] < 0:
            errors.append(f"{labels[field]} cannot be negative")


def validate_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Run the document schema and report every violation at once."""
    try:
        return User.model_validate(doc).model_dump(by_alias=True)
    except SchemaError as exc:
        messages = []
        for err in exc.errors():
            location = ".".join(str(part) for part in err["loc"])
            messages.append(f"{location}: {err['msg']}")
        raise ValidationError("Validation failed", messages)


def canonical_view(record: Dict[str, Any]) -> Dict[str, Any]:
    """The stored record with legacy-shaped collections brought to the canonical shape."""
    view = dict(record)
    view["materials"] = normalize_materials(record.get("materials"))
    view["paymentHistory"] = normalize_payment_history(record.get("paymentHistory"))
    return view


def payment_status(record: Dict[str, Any]) -> str:
    if not record.get("paymentDue"):
        return "paid"
    if not record.get("paymentPaid"):
        return "unpaid"
    return "partial"


# ---------- Create ----------

def build_customer(payload: Dict[str, Any], password_hash: str) -> Dict[str, Any]:
    """Turn a raw create payload into a complete, consistent customer document."""
    name = str(payload.get("name") or "").strip()
    username = str(payload.get("username") or "").strip().lower()
    mobile = str(payload.get("mobile") or "").strip()
    missing = [field for field, value in (("name", name), ("username", username), ("mobile", mobile)) if not value]
    if missing:
        raise ValidationError(
            "Name, username, and mobile are required fields",
            [f"{field} is required" for field in missing],
        )

    errors: List[str] = []
    amounts = {field: _amount(payload.get(field), field, errors) for field in AMOUNT_FIELDS}
    check_non_negative(amounts, errors)
    due_date = _due_date(payload.get("dueDate"), errors)
    if errors:
        raise ValidationError("Validation failed", errors)

    materials = normalize_materials(payload.get("materials"))
    history = normalize_payment_history(payload.get("paymentHistory"))

    paid = sum_payments(history) if history else amounts["paymentPaid"]
    total = amounts["totalAmount"]
    due = amounts["paymentDue"]
    if total:
        due = max(0, total - paid)
    else:
        total = paid + due

    doc = {
        "name": name,
        "username": username,
        "passwordHash": password_hash,
        "mobile": mobile,
        "area": str(payload.get("area") or "").strip() or "Not specified",
        "address": str(payload.get("address") or "").strip() or "Not specified",
        "role": "customer",
        "workStatus": payload.get("workStatus") or "pending",
        "jobDetail": str(payload.get("jobDetail") or "").strip(),
        "totalAmount": total,
        "paymentPaid": paid,
        "paymentDue": due,
        "paymentHistory": history,
        "dueDate": due_date,
        "completionStatus": str(payload.get("completionStatus") or "").strip() or "Not Started",
        "materials": materials,
        "materialsTotalCost": materials_total_cost(materials),
        "housePhoto": decode_photo(payload.get("housePhoto")),
        "ownerPhoto": decode_photo(payload.get("ownerPhoto")),
        "isActive": True,
    }
    return validate_user(doc)


# ---------- Update ----------

def _apply_photos(changes: Dict[str, Any]) -> None:
    for field in PHOTO_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if value is None or value == "":
            changes[field] = None
            continue
        photo = decode_photo(value)
        if photo is None:
            logger.warning("Leaving %s unchanged, payload could not be decoded", field)
            del changes[field]
        else:
            changes[field] = photo


def reconcile_update(existing: Dict[str, Any], patch: Dict[str, Any], role: Optional[str]) -> Dict[str, Any]:
    """Compute the $set document for a partial update by a caller with ``role``."""
    changes = filter_patch(patch, role)
    errors: List[str] = []

    for field in TEXT_FIELDS:
        if isinstance(changes.get(field), str):
            changes[field] = changes[field].strip()
    for field in AMOUNT_FIELDS:
        if field in changes:
            changes[field] = _amount(changes[field], field, errors)
    if "dueDate" in changes:
        changes["dueDate"] = _due_date(changes["dueDate"], errors)
    if errors:
        raise ValidationError("Validation failed", errors)

    if "materials" in changes:
        changes["materials"] = normalize_materials(changes["materials"])
        changes["materialsTotalCost"] = materials_total_cost(changes["materials"])
    _apply_photos(changes)

    stored_paid = existing.get("paymentPaid") or 0
    stored_due = existing.get("paymentDue") or 0
    effective_total = changes.get("totalAmount", existing.get("totalAmount") or 0)

    if "paymentHistory" in changes:
        history = normalize_payment_history(changes["paymentHistory"])
        paid = sum_payments(history)
        changes["paymentHistory"] = history
        changes["paymentPaid"] = paid
        changes["paymentDue"] = max(0, effective_total - paid) if history else effective_total
    else:
        if "paymentPaid" in changes and existing.get("paymentHistory"):
            logger.info("Ignoring paymentPaid, it is derived from the stored payment history")
            del changes["paymentPaid"]
        # a negative due is left for check_non_negative to reject
        recompute = "totalAmount" in changes or "paymentPaid" in changes or changes.get("paymentDue", -1) >= 0
        if effective_total and recompute:
            paid = changes.get("paymentPaid", stored_paid)
            changes["paymentDue"] = max(0, effective_total - paid)

    if role == "admin" and not effective_total:
        changes["totalAmount"] = changes.get("paymentPaid", stored_paid) + changes.get("paymentDue", stored_due)

    check_non_negative(changes, errors)
    if errors:
        raise ValidationError("Validation failed", errors)

    merged = {**canonical_view(existing), **changes}
    validated = validate_user(merged)
    return {field: validated[field] for field in changes}


# ---------- Payments and materials ----------

def reconcile_payment(existing: Dict[str, Any], amount: Any, description: Any = None, date: Any = None) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Append one payment; returns the $set document and the new entry."""
    value = to_number(amount)
    if value is None or value <= 0:
        raise ValidationError(
            "Payment amount is required and must be greater than 0",
            ["amount must be greater than 0"],
        )
    entry = {
        "date": coerce_date(date),
        "amount": value,
        "description": str(description or "").strip(),
    }

    history = normalize_payment_history(existing.get("paymentHistory")) + [entry]
    paid = sum_payments(history)
    total = existing.get("totalAmount") or ((existing.get("paymentPaid") or 0) + (existing.get("paymentDue") or 0))
    changes = {
        "paymentHistory": history,
        "paymentPaid": paid,
        "paymentDue": max(0, total - paid),
    }

    validated = validate_user({**canonical_view(existing), **changes})
    return {field: validated[field] for field in changes}, validated["paymentHistory"][-1]


def add_material(existing: Dict[str, Any], raw: Any) -> Dict[str, Any]:
    """Append a single material, refusing a name the record already has."""
    material = normalize_material(raw)
    if material is None:
        raise ValidationError("Validation failed", ["Material name is required"])

    materials = normalize_materials(existing.get("materials"))
    if any(m["name"].lower() == material["name"].lower() for m in materials):
        raise ConflictError("Material already exists")
    materials.append(material)
    changes = {"materials": materials, "materialsTotalCost": materials_total_cost(materials)}

    validated = validate_user({**canonical_view(existing), **changes})
    return {field: validated[field] for field in changes}
