"""
Admin registration, login and profile self-edit.

Customers never register themselves; admins create them (see customers.py).
"""
import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from customers import apply_changes, serialize_user, username_taken
from database import create_document, parse_object_id
from errors import ConflictError, ForbiddenError, ValidationError
from reconciliation import reconcile_update, validate_user
from security import MIN_PASSWORD_LENGTH, create_access_token, hash_password, verify_password

load_dotenv()
logger = logging.getLogger(__name__)

ADMIN_SECRET_CODE = os.getenv("ADMIN_SECRET_CODE", "CODE123")


def register_admin(db, payload: Dict[str, Any]) -> Dict[str, Any]:
    secret_code = payload.get("secretCode")
    if not secret_code:
        raise ForbiddenError("Admin secret code is required. Customer accounts can only be created by administrators.")
    if secret_code != ADMIN_SECRET_CODE:
        raise ForbiddenError("Invalid admin secret code. Only administrators can register through this endpoint.")

    password = str(payload.get("password") or "")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Validation failed", [f"Password must be at least {MIN_PASSWORD_LENGTH} characters"])
    username = str(payload.get("username") or "").strip().lower()
    if username and username_taken(db, username):
        raise ConflictError("Username already exists. Please choose a different username.")

    doc = validate_user({
        "name": str(payload.get("name") or "").strip(),
        "username": username,
        "passwordHash": hash_password(password),
        "mobile": str(payload.get("mobile") or "").strip(),
        "role": "admin",
        "area": str(payload.get("area") or "").strip() or "Not specified",
        "address": str(payload.get("address") or "").strip() or "Not specified",
    })
    try:
        user_id = create_document(db, "user", doc)
    except DuplicateKeyError:
        raise ConflictError("Username already exists. Please choose a different username.")
    user = db["user"].find_one({"_id": parse_object_id(user_id)})
    logger.info("Admin %s registered", username)
    return {"user": serialize_user(user), "token": create_access_token(user)}


def login(db, username: Any, password: Any) -> Dict[str, Any]:
    user = db["user"].find_one({"username": str(username or "").strip().lower(), "isActive": True})
    if not user or not verify_password(str(password or ""), user.get("passwordHash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"user": serialize_user(user), "token": create_access_token(user)}


def update_profile(db, user: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Self-edit of contact fields, the same for admins and customers."""
    changes = reconcile_update(user, patch, None)
    return serialize_user(apply_changes(db, user, changes, "User not found"))
