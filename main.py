import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

import accounts
import chat
import customers
from database import db as configured_db, ensure_indexes, get_db
from security import get_current_user, require_admin, require_customer

load_dotenv()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

app = FastAPI(title="Electric Buddy API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    if configured_db is not None:
        ensure_indexes(configured_db)
        logger.info("Database indexes ensured")


# Schemas

class RegisterModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    username: str
    password: str
    mobile: str
    area: Optional[str] = None
    address: Optional[str] = None
    secret_code: Optional[str] = Field(None, alias="secretCode")


class LoginModel(BaseModel):
    username: str
    password: str


class PaymentModel(BaseModel):
    amount: Any = None
    description: Optional[str] = None
    date: Optional[str] = None


class MessageModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    receiver_id: Optional[str] = Field(None, alias="receiverId")
    message: Optional[str] = None


@app.get("/")
def root():
    return {"message": "Welcome to Electric Buddy API", "version": app.version}


@app.get("/api/health")
def health():
    return {"status": "ok", "message": "Electric Buddy API is running"}


@app.get("/test")
def test_database():
    response = {"backend": "running", "database": "not configured", "collections": []}
    if configured_db is not None:
        try:
            response["collections"] = configured_db.list_collection_names()[:10]
            response["database"] = "connected"
        except Exception as e:
            response["database"] = f"error: {str(e)[:80]}"
    return response


# Auth endpoints
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterModel, db=Depends(get_db)):
    data = payload.model_dump(by_alias=True)
    result = accounts.register_admin(db, data)
    return {"message": "Admin account created successfully", **result}


@app.post("/api/auth/login")
def login(payload: LoginModel, db=Depends(get_db)):
    result = accounts.login(db, payload.username, payload.password)
    return {"message": "Login successful", **result}


@app.get("/api/auth/me")
def get_me(current_user=Depends(get_current_user)):
    return {"user": customers.serialize_user(current_user)}


@app.get("/api/auth/verify")
def verify_token(current_user=Depends(get_current_user)):
    return {"valid": True, "user": customers.serialize_user(current_user)}


@app.put("/api/auth/profile")
def update_profile(payload: Dict[str, Any] = Body(...), current_user=Depends(get_current_user), db=Depends(get_db)):
    user = accounts.update_profile(db, current_user, payload)
    return {"message": "Profile updated successfully", "user": user}


# Customer endpoints
@app.get("/api/customers")
def list_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    work_status: str = Query("", alias="workStatus"),
    area: str = "",
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    current_user=Depends(require_admin),
    db=Depends(get_db),
):
    return customers.list_customers(db, page, limit, search, work_status, area, sort_by, sort_order)


@app.get("/api/customers/stats")
def customer_stats(current_user=Depends(require_admin), db=Depends(get_db)):
    return customers.customer_stats(db)


@app.get("/api/customers/me/jobs")
def my_jobs(current_user=Depends(require_customer)):
    return customers.my_jobs(current_user)


@app.post("/api/customers", status_code=201)
def create_customer(payload: Dict[str, Any] = Body(...), current_user=Depends(require_admin), db=Depends(get_db)):
    customer = customers.create_customer(db, payload)
    return {"message": "Customer created successfully", "customer": customer}


@app.get("/api/customers/{customer_id}")
def get_customer(customer_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"user": customers.get_customer(db, current_user, customer_id)}


@app.put("/api/customers/{customer_id}")
def update_customer(customer_id: str, payload: Dict[str, Any] = Body(...), current_user=Depends(get_current_user), db=Depends(get_db)):
    user = customers.update_customer(db, current_user, customer_id, payload)
    return {"message": "User updated successfully", "user": user}


@app.post("/api/customers/{customer_id}/payments")
def add_payment(customer_id: str, payload: PaymentModel, current_user=Depends(require_admin), db=Depends(get_db)):
    result = customers.add_payment(db, customer_id, payload.amount, payload.description, payload.date)
    return {"message": "Payment added successfully", **result}


@app.post("/api/customers/{customer_id}/materials", status_code=201)
def add_material(customer_id: str, material: Any = Body(...), current_user=Depends(require_admin), db=Depends(get_db)):
    customer = customers.add_customer_material(db, customer_id, material)
    return {"message": "Material added successfully", "customer": customer}


@app.delete("/api/customers/{customer_id}")
def delete_customer(customer_id: str, current_user=Depends(require_admin), db=Depends(get_db)):
    customers.delete_customer(db, customer_id)
    return {"message": "Customer deleted successfully"}


# Chat endpoints
@app.post("/api/chat/send", status_code=201)
def send_message(payload: MessageModel, current_user=Depends(get_current_user), db=Depends(get_db)):
    data = chat.send_message(db, current_user, payload.receiver_id, payload.message)
    return {"message": "Message sent successfully", "data": data}


@app.get("/api/chat/messages/{user_id}")
def get_messages(user_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    thread = chat.get_thread(db, current_user, user_id)
    return {"data": thread["messages"], "otherUser": thread["otherUser"]}


@app.get("/api/chat/conversations")
def get_conversations(current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"data": chat.get_conversations(db, current_user)}


@app.put("/api/chat/messages/{user_id}/read")
def mark_messages_read(user_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    count = chat.mark_read(db, current_user, user_id)
    return {"message": "Messages marked as read", "count": count}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
