from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


ROLES = ("user", "volunteer", "ngo", "admin")

DONATION_TYPES = ("Food", "Clothes", "Books", "Other")
# "pending" is reserved; nothing moves a donation into it.
DONATION_STATUSES = ("available", "pending", "requested", "completed")

REQUEST_URGENCIES = ("normal", "urgent", "emergency")
REQUEST_STATUSES = ("pending", "approved", "rejected", "completed")

NGO_STATUSES = ("pending", "approved", "rejected")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    # None only for legacy rows; login treats it as a data error
    password_hash: Optional[str] = None
    roles: List[str] = Field(default_factory=lambda: ["user"], sa_column=Column(JSON))

    bio: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar_url: Optional[str] = None
    ngo_id: Optional[int] = Field(default=None, foreign_key="ngo.id")

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def has_role(self, role: str) -> bool:
        return role in (self.roles or [])

    def add_role(self, role: str) -> None:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        if not self.has_role(role):
            # reassign so the JSON column is flagged dirty
            self.roles = [*(self.roles or []), role]


class Donation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    type: str
    title: str
    description: str
    donor_name: str = "Anonymous"
    quantity: str
    food_type: Optional[str] = None
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    availability: dict = Field(default_factory=dict, sa_column=Column(JSON))
    location: dict = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default="available", index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Request(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    donation_id: int = Field(foreign_key="donation.id", index=True)

    requestor_name: str
    contact_number: str
    address: str
    reason: str
    urgency: str = "normal"  # normal | urgent | emergency
    status: str = "pending"  # pending | approved | rejected | completed

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NGO(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    organization_name: str
    organization_email: str = Field(index=True, unique=True)
    phone_number: str
    contact_person_name: Optional[str] = None
    contact_person_email: Optional[str] = None
    contact_person_phone: Optional[str] = None
    ngo_website: Optional[str] = None
    ngo_type: str
    incorporation_date: Optional[date] = None
    address: str
    social_media_links: Optional[str] = None
    logo: Optional[str] = None
    certification: Optional[str] = None
    status: str = "pending"  # pending | approved | rejected

    created_at: datetime = Field(default_factory=utcnow)


class Volunteer(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True)

    name: str
    email: str
    phone: str
    address: str
    availability: str
    interests: str
    experience: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)


class FreeFoodListing(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    uploaded_by: int = Field(foreign_key="user.id", index=True)

    type: Optional[str] = None
    venue: Optional[str] = None
    food_type: Optional[str] = None
    # {"type": specific|weekdays|weekend|allDays, "specific_date", "start_time", "end_time"}
    availability: dict = Field(default_factory=dict, sa_column=Column(JSON))
    organized_by: Optional[str] = None
    venue_image: Optional[str] = None
    location: dict = Field(default_factory=dict, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
