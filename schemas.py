import re
from datetime import date, datetime
from typing import Annotated, List, Literal, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)


DonationType = Literal["Food", "Clothes", "Books", "Other"]
DonationStatus = Literal["available", "pending", "requested", "completed"]
Urgency = Literal["normal", "urgent", "emergency"]
RequestStatus = Literal["pending", "approved", "rejected", "completed"]


def normalize_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


# Accounts are keyed on the trimmed, lowercased address
NormalizedEmail = Annotated[EmailStr, BeforeValidator(normalize_email)]


def check_password_strength(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters long")
    if not re.search(r"\d", value):
        raise ValueError("Password must contain at least one number")
    if not re.search(r"[a-zA-Z]", value):
        raise ValueError("Password must contain at least one letter")
    return value


class UserCreate(BaseModel):
    name: str
    email: NormalizedEmail
    password: str

    @field_validator("name")
    @classmethod
    def name_long_enough(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Name must be at least 2 characters long")
        return value

    @field_validator("password")
    @classmethod
    def password_strong_enough(cls, value: str) -> str:
        return check_password_strength(value)


class LoginData(BaseModel):
    email: NormalizedEmail
    password: str = Field(min_length=1)


class PasswordChange(BaseModel):
    # the web client posts camelCase keys
    current_password: str = Field(min_length=1, alias="currentPassword")
    new_password: str = Field(alias="newPassword")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("new_password")
    @classmethod
    def password_strong_enough(cls, value: str) -> str:
        return check_password_strength(value)


class UserRead(BaseModel):
    id: int
    email: EmailStr
    name: str
    roles: List[str]
    bio: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar_url: Optional[str] = None
    ngo_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserPublic(BaseModel):
    id: int
    name: str
    email: EmailStr

    model_config = ConfigDict(from_attributes=True)


class AuthResult(BaseModel):
    message: Optional[str] = None
    token: str
    user: UserRead


class Location(BaseModel):
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    area: Optional[str] = None


class Availability(BaseModel):
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None


class DonationPublic(BaseModel):
    id: int
    type: str
    title: str
    description: str
    donor_name: str
    quantity: str
    food_type: Optional[str] = None
    images: List[str]
    availability: dict
    location: dict
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DonationRead(DonationPublic):
    user_id: int


class DonationDetail(BaseModel):
    donation: DonationRead
    owner: Optional[UserPublic] = None


class DonationStatusUpdate(BaseModel):
    status: DonationStatus


class DonationStats(BaseModel):
    total_donations: int
    ngo_count: int
    volunteer_count: int
    user_count: int
    request_count: int


class RequestCreate(BaseModel):
    donation_id: int
    requestor_name: str = Field(min_length=1)
    contact_number: str = Field(min_length=1)
    address: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    urgency: Urgency = "normal"


class RequestStatusUpdate(BaseModel):
    status: RequestStatus


class RequestRead(BaseModel):
    id: int
    user_id: int
    donation_id: int
    requestor_name: str
    contact_number: str
    address: str
    reason: str
    urgency: str
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RequestWithDonation(RequestRead):
    donation: Optional[DonationRead] = None


class VolunteerCreate(BaseModel):
    name: str = Field(min_length=2)
    email: NormalizedEmail
    phone: str = Field(min_length=1)
    address: str = Field(min_length=1)
    availability: str = Field(min_length=1)
    interests: str = Field(min_length=1)
    experience: Optional[str] = None
    password: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_strong_enough(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return check_password_strength(value)


class VolunteerRead(BaseModel):
    id: int
    user_id: int
    name: str
    email: str
    phone: str
    address: str
    availability: str
    interests: str
    experience: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VolunteerResult(BaseModel):
    message: str
    volunteer: VolunteerRead
    user: UserPublic


class NGORead(BaseModel):
    id: int
    organization_name: str
    organization_email: str
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
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FreeFoodAvailability(BaseModel):
    type: Optional[Literal["specific", "weekdays", "weekend", "allDays"]] = None
    specific_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class FreeFoodLocation(BaseModel):
    address: Optional[str] = None
    area: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class FreeFoodRead(BaseModel):
    id: int
    uploaded_by: int
    type: Optional[str] = None
    venue: Optional[str] = None
    food_type: Optional[str] = None
    availability: dict
    organized_by: Optional[str] = None
    venue_image: Optional[str] = None
    location: dict
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ContactMessage(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    message: str = Field(min_length=1)
