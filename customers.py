"""
Customer records: persistence around the reconciliation functions.
"""
import logging
import math
import os
import re
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, find_active_user, parse_object_id, utcnow
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from normalization import encode_photo, format_date
from reconciliation import (
    PHOTO_FIELDS,
    add_material,
    build_customer,
    payment_status,
    reconcile_payment,
    reconcile_update,
)
from schemas import WORK_STATUSES
from security import MIN_PASSWORD_LENGTH, hash_password

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_PASSWORD = os.getenv("DEFAULT_CUSTOMER_PASSWORD", "default123")
SORT_FIELDS = (
    "createdAt", "updatedAt", "name", "username", "area", "workStatus",
    "totalAmount", "paymentPaid", "paymentDue", "dueDate",
)


def serialize_payment(payment: Dict[str, Any]) -> Dict[str, Any]:
    return {**payment, "date": format_date(payment.get("date"))}


def serialize_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Transport form of a user: no password, photos as data URIs, dates as YYYY-MM-DD."""
    user = {k: v for k, v in doc.items() if k != "passwordHash"}
    user["_id"] = str(doc["_id"])
    for field in PHOTO_FIELDS:
        user[field] = encode_photo(doc.get(field))
    user["paymentHistory"] = [serialize_payment(p) for p in doc.get("paymentHistory") or [] if isinstance(p, dict)]
    user["dueDate"] = format_date(doc.get("dueDate"))
    if doc.get("role") == "customer":
        user["paymentStatus"] = payment_status(doc)
    return user


def check_owner(viewer: Dict[str, Any], user_id: Any, action: str) -> None:
    if viewer.get("role") == "customer" and str(viewer["_id"]) != str(user_id):
        raise ForbiddenError(f"Access denied. You can only {action} your own profile.")


def username_taken(db, username: str) -> bool:
    return db["user"].find_one({"username": username.strip().lower()}) is not None


# ---------- Actions ----------

def create_customer(db, payload: Dict[str, Any]) -> Dict[str, Any]:
    password = payload.get("password") or DEFAULT_CUSTOMER_PASSWORD
    if len(str(password)) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Validation failed", [f"Password must be at least {MIN_PASSWORD_LENGTH} characters"])

    username = str(payload.get("username") or "")
    if username.strip() and username_taken(db, username):
        raise ConflictError("Username already exists")

    doc = build_customer(payload, hash_password(str(password)))
    try:
        customer_id = create_document(db, "user", doc)
    except DuplicateKeyError:
        raise ConflictError("Username already exists")
    logger.info("Customer %s created (%s)", doc["username"], customer_id)
    return serialize_user(db["user"].find_one({"_id": parse_object_id(customer_id)}))


def list_customers(
    db,
    page: int = 1,
    limit: int = 10,
    search: str = "",
    work_status: str = "",
    area: str = "",
    sort_by: str = "createdAt",
    sort_order: str = "desc",
) -> Dict[str, Any]:
    q: Dict[str, Any] = {"role": "customer", "isActive": True}
    if search:
        pattern = re.escape(search)
        q["$or"] = [{field: {"$regex": pattern, "$options": "i"}} for field in ("name", "username", "area", "mobile")]
    if work_status in WORK_STATUSES:
        q["workStatus"] = work_status
    if area:
        q["area"] = {"$regex": re.escape(area), "$options": "i"}

    if sort_by not in SORT_FIELDS:
        sort_by = "createdAt"
    direction = ASCENDING if sort_order == "asc" else DESCENDING

    cur = (
        db["user"].find(q)
        .sort([(sort_by, direction), ("_id", direction)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    customers = [serialize_user(c) for c in cur]
    total = db["user"].count_documents(q)
    pages = math.ceil(total / limit)
    return {
        "customers": customers,
        "pagination": {
            "current": page,
            "pages": pages,
            "total": total,
            "hasNext": page < pages,
            "hasPrev": page > 1,
        },
    }


def customer_stats(db) -> Dict[str, Any]:
    match = {"$match": {"role": "customer", "isActive": True}}
    totals = list(db["user"].aggregate([
        match,
        {"$group": {
            "_id": None,
            "totalCustomers": {"$sum": 1},
            "totalOngoing": {"$sum": {"$cond": [{"$eq": ["$workStatus", "ongoing"]}, 1, 0]}},
            "totalCompleted": {"$sum": {"$cond": [{"$eq": ["$workStatus", "completed"]}, 1, 0]}},
            "totalPending": {"$sum": {"$cond": [{"$eq": ["$workStatus", "pending"]}, 1, 0]}},
            "totalRevenue": {"$sum": "$paymentPaid"},
            "totalDue": {"$sum": "$paymentDue"},
            "avgPayment": {"$avg": "$paymentPaid"},
        }},
    ]))
    by_area = db["user"].aggregate([
        match,
        {"$group": {
            "_id": "$area",
            "count": {"$sum": 1},
            "totalRevenue": {"$sum": "$paymentPaid"},
            "totalDue": {"$sum": "$paymentDue"},
        }},
        {"$sort": {"count": -1}},
        {"$limit": 10},
    ])

    if totals:
        stats = {k: v for k, v in totals[0].items() if k != "_id"}
    else:
        stats = {
            "totalCustomers": 0, "totalOngoing": 0, "totalCompleted": 0, "totalPending": 0,
            "totalRevenue": 0, "totalDue": 0, "avgPayment": 0,
        }
    area_stats = [
        {"area": a["_id"], "count": a["count"], "totalRevenue": a["totalRevenue"], "totalDue": a["totalDue"]}
        for a in by_area
    ]
    return {"stats": stats, "areaStats": area_stats}


def get_customer(db, viewer: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    check_owner(viewer, user_id, "view")
    user = find_active_user(db, user_id)
    return serialize_user(user)


def apply_changes(db, user: Dict[str, Any], changes: Dict[str, Any], message: str) -> Dict[str, Any]:
    changes["updatedAt"] = utcnow()
    updated = db["user"].find_one_and_update(
        {"_id": user["_id"], "isActive": True},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError(message)
    return updated


def update_customer(db, viewer: Dict[str, Any], user_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    check_owner(viewer, user_id, "update")
    user = find_active_user(db, user_id)
    changes = reconcile_update(user, patch, viewer.get("role"))
    updated = apply_changes(db, user, changes, "User not found")
    logger.info(
        "User %s updated by %s: %s",
        user["username"], viewer.get("username"), ", ".join(sorted(k for k in changes if k != "updatedAt")),
    )
    return serialize_user(updated)


def add_payment(db, user_id: str, amount: Any, description: Optional[str] = None, date: Any = None) -> Dict[str, Any]:
    customer = find_active_user(db, user_id, "Customer not found", role="customer")
    changes, payment = reconcile_payment(customer, amount, description, date)
    updated = apply_changes(db, customer, changes, "Customer not found")
    logger.info("Payment of %s added to %s, due now %s", payment["amount"], customer["username"], changes["paymentDue"])
    return {"customer": serialize_user(updated), "payment": serialize_payment(payment)}


def add_customer_material(db, user_id: str, material: Any) -> Dict[str, Any]:
    customer = find_active_user(db, user_id, "Customer not found", role="customer")
    changes = add_material(customer, material)
    updated = apply_changes(db, customer, changes, "Customer not found")
    return serialize_user(updated)


def delete_customer(db, user_id: str) -> None:
    result = db["user"].update_one(
        {"_id": parse_object_id(user_id, "Customer not found"), "isActive": True},
        {"$set": {"isActive": False, "updatedAt": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Customer not found")
    logger.info("Customer %s deactivated", user_id)


def my_jobs(viewer: Dict[str, Any]) -> Dict[str, Any]:
    job = serialize_user(viewer)
    job["jobId"] = job["_id"]
    return {"jobs": [job], "total": 1}
