"""
Database Schemas for Electric Buddy

Each Pydantic model maps to a MongoDB collection (lowercased class name).
Documents are stored with camelCase keys.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

WORK_STATUSES = ("pending", "ongoing", "completed")


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Material(Document):
    name: str = Field(..., min_length=1, max_length=100, description="Material name")
    cost: Optional[float] = Field(None, ge=0, description="Cost, only set when purchased by admin")
    purchased_by_admin: bool = Field(False, description="Bought by the admin for the job")


class PaymentEntry(Document):
    date: datetime = Field(..., description="Calendar date of the payment (midnight)")
    amount: float = Field(..., gt=0, description="Amount received")
    description: str = Field("", max_length=500)


class User(Document):
    name: str = Field(..., min_length=1, max_length=100, description="Full name")
    username: str = Field(..., min_length=3, max_length=50, description="Lower-cased login handle")
    password_hash: str = Field(..., description="BCrypt hashed password")
    mobile: str = Field(..., pattern=r"^[0-9]{10}$", description="10-digit mobile number")
    area: str = Field("Not specified", max_length=100)
    address: str = Field("Not specified", max_length=500)
    role: Literal["admin", "customer"] = "customer"
    work_status: Literal["pending", "ongoing", "completed"] = "pending"
    job_detail: str = Field("", max_length=1000)
    total_amount: float = Field(0, ge=0, description="Job cost, excluding materials")
    payment_paid: float = Field(0, ge=0)
    payment_due: float = Field(0, ge=0)
    payment_history: List[PaymentEntry] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    completion_status: str = Field("Not Started", max_length=100)
    materials: List[Material] = Field(default_factory=list)
    materials_total_cost: float = Field(0, ge=0)
    house_photo: Optional[bytes] = None
    owner_photo: Optional[bytes] = None
    is_active: bool = True


class Message(Document):
    sender: str = Field(..., description="Sender user id")
    receiver: str = Field(..., description="Receiver user id")
    message: str = Field(..., min_length=1, description="Message text")
    is_read: bool = False
    read_at: Optional[datetime] = None
