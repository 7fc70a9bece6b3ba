"""
Admin <-> customer chat over the ``message`` collection.

There is no conversation collection: the conversation list is rebuilt from
the messages on every request. Only admin/customer pairs may talk.
"""
import logging
from typing import Any, Dict, Iterable, List

from bson import ObjectId
from pymongo import DESCENDING

from database import create_document, find_active_user, parse_object_id, utcnow
from errors import ForbiddenError, ValidationError
from notifications import notifier
from schemas import Message

logger = logging.getLogger(__name__)

COUNTERPART_ROLE = {"admin": "customer", "customer": "admin"}
THREAD_LIMIT = 100
NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]


def summarize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(user["_id"]),
        "name": user.get("name"),
        "username": user.get("username"),
        "role": user.get("role"),
    }


def serialize_message(msg: Dict[str, Any], users: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "_id": str(msg["_id"]),
        "sender": summarize_user(users[msg["sender"]]),
        "receiver": summarize_user(users[msg["receiver"]]),
        "message": msg["message"],
        "isRead": msg.get("isRead", False),
        "createdAt": msg.get("createdAt"),
        "updatedAt": msg.get("updatedAt"),
    }


def check_topology(viewer: Dict[str, Any], other: Dict[str, Any]) -> None:
    if other.get("role") != COUNTERPART_ROLE.get(viewer.get("role")):
        if viewer.get("role") == "customer":
            raise ForbiddenError("Customers can only chat with admins")
        raise ForbiddenError("Admins can only chat with customers")


def find_counterpart(db, viewer: Dict[str, Any], other_id: Any, message: str = "User not found") -> Dict[str, Any]:
    other = find_active_user(db, other_id, message)
    check_topology(viewer, other)
    return other


def thread_query(a: str, b: str) -> Dict[str, Any]:
    return {"$or": [{"sender": a, "receiver": b}, {"sender": b, "receiver": a}]}


# ---------- Actions ----------

def send_message(db, sender: Dict[str, Any], receiver_id: Any, text: Any) -> Dict[str, Any]:
    text = text.strip() if isinstance(text, str) else ""
    if not receiver_id or not text:
        raise ValidationError("Receiver ID and message content are required", [
            f"{field} is required" for field, value in (("receiverId", receiver_id), ("message", text)) if not value
        ])
    if str(sender["_id"]) == str(receiver_id):
        raise ValidationError("Cannot send message to yourself", ["receiverId must be another user"])

    receiver = find_counterpart(db, sender, receiver_id, "Receiver not found")
    sender_id, receiver_id = str(sender["_id"]), str(receiver["_id"])
    msg_id = create_document(db, "message", Message(sender=sender_id, receiver=receiver_id, message=text))
    msg = db["message"].find_one({"_id": ObjectId(msg_id)})

    data = serialize_message(msg, {sender_id: sender, receiver_id: receiver})
    logger.info("Message %s sent from %s to %s", msg_id, sender.get("username"), receiver.get("username"))
    notifier.notify(data)
    return data


def mark_thread_read(db, reader_id: str, other_id: str) -> int:
    now = utcnow()
    result = db["message"].update_many(
        {"sender": other_id, "receiver": reader_id, "isRead": False},
        {"$set": {"isRead": True, "readAt": now, "updatedAt": now}},
    )
    return result.modified_count


def get_thread(db, viewer: Dict[str, Any], other_id: Any) -> Dict[str, Any]:
    """The latest messages with ``other_id``, oldest first. Marks the incoming ones read."""
    other = find_counterpart(db, viewer, other_id)
    me, them = str(viewer["_id"]), str(other["_id"])

    recent = list(db["message"].find(thread_query(me, them)).sort(NEWEST_FIRST).limit(THREAD_LIMIT))
    recent.reverse()
    mark_thread_read(db, me, them)

    users = {me: viewer, them: other}
    return {
        "messages": [serialize_message(m, users) for m in recent],
        "otherUser": summarize_user(other),
    }


def mark_read(db, viewer: Dict[str, Any], other_id: Any) -> int:
    other = find_counterpart(db, viewer, other_id)
    return mark_thread_read(db, str(viewer["_id"]), str(other["_id"]))


def aggregate_conversations(
    viewer: Dict[str, Any],
    messages: Iterable[Dict[str, Any]],
    users_by_id: Dict[str, Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """Group ``messages`` by the other party into conversation summaries, newest activity first."""
    me = str(viewer["_id"])
    expected_role = COUNTERPART_ROLE.get(viewer.get("role"))

    grouped: Dict[str, Dict[str, Any]] = {}
    for msg in messages:
        from_me = msg["sender"] == me
        other_id = msg["receiver"] if from_me else msg["sender"]
        conv = grouped.setdefault(other_id, {"lastMessage": None, "unreadCount": 0})

        last = conv["lastMessage"]
        if last is None or msg["createdAt"] > last["createdAt"]:
            conv["lastMessage"] = {
                "message": msg["message"],
                "createdAt": msg["createdAt"],
                "isFromMe": from_me,
            }
        if not from_me and not msg.get("isRead", False):
            conv["unreadCount"] += 1

    conversations = []
    for other_id, conv in grouped.items():
        other = users_by_id.get(other_id)
        if other is None or other.get("role") != expected_role:
            continue
        item = {
            "userId": other_id,
            "name": other.get("name"),
            "username": other.get("username"),
            "role": other.get("role"),
        }
        if viewer.get("role") == "admin":
            item["mobile"] = other.get("mobile")
            item["area"] = other.get("area")
        item["lastMessage"] = conv["lastMessage"]
        item["unreadCount"] = conv["unreadCount"]
        conversations.append(item)

    active = [c for c in conversations if c["lastMessage"] is not None]
    silent = [c for c in conversations if c["lastMessage"] is None]
    active.sort(key=lambda c: c["lastMessage"]["createdAt"], reverse=True)
    return active + silent


def get_conversations(db, viewer: Dict[str, Any]) -> List[Dict[str, Any]]:
    me = str(viewer["_id"])
    messages = list(db["message"].find({"$or": [{"sender": me}, {"receiver": me}]}).sort(NEWEST_FIRST))

    other_ids = {m["sender"] for m in messages} | {m["receiver"] for m in messages}
    other_ids.discard(me)
    oids = [parse_object_id(i) for i in other_ids if ObjectId.is_valid(i)]
    users = db["user"].find({"_id": {"$in": oids}, "isActive": True})
    users_by_id = {str(u["_id"]): u for u in users}
    return aggregate_conversations(viewer, messages, users_by_id)
