import logging
import secrets

from fastapi import APIRouter, BackgroundTasks, HTTPException

from db import SessionDep
from models import User, Volunteer
from notifications import NotifierDep
from schemas import VolunteerCreate, VolunteerResult
from .auth import find_user_by_email, hash_password

logger = logging.getLogger(__name__)

router = APIRouter(tags=["volunteers"])


@router.post("", status_code=201, response_model=VolunteerResult)
@router.post("/register", status_code=201, response_model=VolunteerResult)
def register_volunteer(
    volunteer_in: VolunteerCreate,
    session: SessionDep,
    notifier: NotifierDep,
    background_tasks: BackgroundTasks,
):
    """
    Sign up a volunteer together with a fresh account. An email that already
    has an account is refused; this endpoint is unauthenticated, so it never
    changes roles on an existing account.
    """
    if find_user_by_email(session, volunteer_in.email):
        raise HTTPException(
            status_code=400,
            detail={
                "message": "A user with this email already exists",
                "code": "EMAIL_TAKEN",
            },
        )

    # without a chosen password the account can only be used after a reset
    password = volunteer_in.password or secrets.token_urlsafe(32)
    user = User(
        email=volunteer_in.email,
        name=volunteer_in.name.strip(),
        password_hash=hash_password(password),
        roles=["volunteer"],
        phone=volunteer_in.phone,
        address=volunteer_in.address,
    )
    session.add(user)
    session.flush()

    volunteer = Volunteer(
        user_id=user.id,
        **volunteer_in.model_dump(exclude={"password"}),
    )
    session.add(volunteer)
    session.commit()
    session.refresh(user)
    session.refresh(volunteer)

    background_tasks.add_task(notifier.send_welcome, user.email, user.name)
    logger.info("Volunteer %s registered for user %s", volunteer.id, user.id)

    return {
        "message": "Volunteer registered successfully",
        "volunteer": volunteer,
        "user": user,
    }
