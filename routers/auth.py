import logging
from datetime import datetime, timezone
from typing import Annotated, Optional

from db import SessionDep
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    UploadFile,
)
from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer
from models import Donation, FreeFoodListing, Request, User, Volunteer, utcnow
from notifications import NotifierDep
from passlib.context import CryptContext
from pydantic import BaseModel, Field
from schemas import (
    AuthResult,
    LoginData,
    NormalizedEmail,
    PasswordChange,
    UserCreate,
    UserRead,
)
from sqlmodel import Session, select

import config
import storage

from .forms import build_model

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

ACCESS_TOKEN_TTL = 60 * 60 * 24
REFRESH_TOKEN_TTL = 60 * 60 * 24 * 7

serializer = URLSafeTimedSerializer(config.SECRET_KEY, salt="auth-token")


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user_id: int, ttl_seconds: int = ACCESS_TOKEN_TTL) -> str:
    """
    Sign the user id together with the token's own lifetime.
    Example data:
        {"user_id": 3, "ttl": 86400}
    """
    return serializer.dumps({"user_id": user_id, "ttl": ttl_seconds})


def _auth_error(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"message": message, "code": code},
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> dict:
    """
    Returns the token payload, or raises 401 with TOKEN_EXPIRED for a token
    past its lifetime and INVALID_TOKEN for anything that fails to verify.
    """
    try:
        data, signed_at = serializer.loads(
            token, max_age=REFRESH_TOKEN_TTL, return_timestamp=True
        )
    except SignatureExpired:
        raise _auth_error("TOKEN_EXPIRED", "Token expired")
    except BadData:
        raise _auth_error("INVALID_TOKEN", "Invalid token")

    if not isinstance(data, dict) or not isinstance(data.get("user_id"), int):
        raise _auth_error("INVALID_TOKEN", "Invalid token")

    ttl = data.get("ttl", ACCESS_TOKEN_TTL)
    age = (datetime.now(timezone.utc) - signed_at).total_seconds()
    if age > ttl:
        raise _auth_error("TOKEN_EXPIRED", "Token expired")
    return data


def get_current_user(
    session: SessionDep,
    authorization: Optional[str] = Header(default=None),
) -> dict:
    """
    Reads the bearer token, verifies it, looks up the user and returns
    {"user": User, "user_id": str}. Raises 401 with a `code` otherwise.
    """
    token = (authorization or "").strip()
    scheme, _, credentials = token.partition(" ")
    if scheme.lower() == "bearer":
        token = credentials.strip()
    if not token:
        raise _auth_error("NO_TOKEN", "No auth token")

    try:
        data = decode_access_token(token)
        user = session.get(User, data["user_id"])
    except HTTPException:
        raise
    except Exception:
        logger.exception("Auth check failed")
        raise _auth_error("AUTH_FAILED", "Authentication failed")

    if user is None:
        raise _auth_error("USER_NOT_FOUND", "User not found")

    return {"user": user, "user_id": str(user.id)}


CurrentUserDep = Annotated[dict, Depends(get_current_user)]


def find_user_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(
        select(User).where(User.email == email.strip().lower())
    ).first()


@router.post("/register", status_code=201, response_model=AuthResult)
def register(
    user_in: UserCreate,
    session: SessionDep,
    notifier: NotifierDep,
    background_tasks: BackgroundTasks,
):
    """
    Register a new user with a hashed password and hand back a 24h token.
    """
    if find_user_by_email(session, user_in.email):
        raise HTTPException(
            status_code=400,
            detail={"message": "Email already registered", "code": "EMAIL_TAKEN"},
        )

    user = User(
        email=user_in.email,
        name=user_in.name,
        password_hash=hash_password(user_in.password),
        roles=["user"],
    )
    session.add(user)
    session.commit()
    session.refresh(user)

    if user.id is None:
        raise HTTPException(
            status_code=500, detail="User was not created successfully"
        )

    background_tasks.add_task(notifier.send_welcome, user.email, user.name)
    logger.info("Registered user %s", user.id)

    return {
        "message": "Registration successful",
        "token": create_access_token(user.id),
        "user": user,
    }


@router.post("/login", response_model=AuthResult)
def login(payload: LoginData, session: SessionDep):
    """
    Log in with email + password. The email is matched trimmed and lowercased.
    """
    user = find_user_by_email(session, payload.email)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"message": "Invalid credentials", "code": "INVALID_CREDENTIALS"},
        )

    if not user.password_hash:
        # a stored account without a hash is a data problem, not a bad login
        logger.error("User %s has no password hash", user.id)
        raise HTTPException(
            status_code=500,
            detail={
                "message": "Please reset your password or contact support",
                "code": "PASSWORD_NOT_SET",
            },
        )

    try:
        matches = verify_password(payload.password, user.password_hash)
    except ValueError:
        logger.error("User %s has an unreadable password hash", user.id)
        raise HTTPException(
            status_code=500,
            detail={
                "message": "Please reset your password or contact support",
                "code": "PASSWORD_NOT_SET",
            },
        )

    if not matches:
        raise HTTPException(
            status_code=401,
            detail={"message": "Invalid credentials", "code": "INVALID_CREDENTIALS"},
        )

    return {"token": create_access_token(user.id), "user": user}


@router.get("/verify", response_model=AuthResult)
def verify(current: CurrentUserDep):
    """
    Confirm the caller's token and exchange it for a longer-lived one.
    """
    user = current["user"]
    return {
        "token": create_access_token(user.id, ttl_seconds=REFRESH_TOKEN_TTL),
        "user": user,
    }


@router.get("/profile", response_model=UserRead)
def read_profile(current: CurrentUserDep):
    return current["user"]


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    email: Optional[NormalizedEmail] = None
    bio: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


@router.put("/profile", response_model=UserRead)
def update_profile(
    session: SessionDep,
    current: CurrentUserDep,
    name: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    bio: Optional[str] = Form(default=None),
    phone: Optional[str] = Form(default=None),
    address: Optional[str] = Form(default=None),
    avatar: Optional[UploadFile] = File(default=None),
):
    user = current["user"]
    changes = build_model(
        ProfileUpdate,
        name=name or None,
        email=email or None,
        bio=bio or None,
        phone=phone or None,
        address=address or None,
    )

    if changes.email and changes.email != user.email:
        if find_user_by_email(session, changes.email):
            raise HTTPException(
                status_code=400,
                detail={"message": "Email already registered", "code": "EMAIL_TAKEN"},
            )

    for field, value in changes.model_dump(exclude_none=True).items():
        setattr(user, field, value.strip() if field == "name" else value)

    old_avatar = None
    if avatar is not None and avatar.filename:
        old_avatar = user.avatar_url
        user.avatar_url = storage.save_upload(avatar, "avatars", prefix="avatar-")

    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)

    if old_avatar:
        storage.delete_upload(old_avatar)
    return user


@router.post("/change-password")
def change_password(
    payload: PasswordChange,
    session: SessionDep,
    current: CurrentUserDep,
):
    user = current["user"]
    if not user.password_hash or not verify_password(
        payload.current_password, user.password_hash
    ):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    user.password_hash = hash_password(payload.new_password)
    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    return {"message": "Password updated successfully"}


def delete_account(session: Session, user: User) -> None:
    """
    Remove a user and everything that hangs off the account: their requests,
    their donations (with every request against them), their volunteer
    profile and their free-food listings. Stored files go last, best-effort.
    """
    files = [user.avatar_url]

    # 1) Requests *made by* this user
    for req in session.exec(select(Request).where(Request.user_id == user.id)).all():
        session.delete(req)

    # 2) Donations *made by* this user, and requests against them
    for donation in session.exec(
        select(Donation).where(Donation.user_id == user.id)
    ).all():
        for req in session.exec(
            select(Request).where(Request.donation_id == donation.id)
        ).all():
            session.delete(req)
        files.extend(donation.images or [])
        session.delete(donation)

    # 3) Volunteer profile and free-food listings
    volunteer = session.exec(
        select(Volunteer).where(Volunteer.user_id == user.id)
    ).first()
    if volunteer:
        session.delete(volunteer)

    for listing in session.exec(
        select(FreeFoodListing).where(FreeFoodListing.uploaded_by == user.id)
    ).all():
        files.append(listing.venue_image)
        session.delete(listing)

    # flush dependents before the user row they reference
    session.flush()
    session.delete(user)
    session.commit()

    for path in files:
        if path:
            storage.delete_upload(path)


@router.delete("/profile/delete")
def delete_profile(session: SessionDep, current: CurrentUserDep):
    user_id = current["user_id"]
    delete_account(session, current["user"])
    logger.info("Deleted account %s", user_id)
    return {"message": "Account deleted successfully"}
