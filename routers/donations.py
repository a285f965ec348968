import logging
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from sqlalchemy import func
from sqlmodel import select

import lifecycle
import storage
from db import SessionDep
from models import NGO, Donation, Request, User, Volunteer, utcnow
from schemas import (
    Availability,
    DonationDetail,
    DonationPublic,
    DonationRead,
    DonationStats,
    DonationStatusUpdate,
    DonationType,
    Location,
)
from .auth import CurrentUserDep
from .forms import parse_json_field

logger = logging.getLogger(__name__)

router = APIRouter(tags=["donations"])

MAX_IMAGES = 5


def _save_images(images: Optional[List[UploadFile]]) -> List[str]:
    """Store up to MAX_IMAGES uploads; a failure removes the ones already written."""
    uploads = [upload for upload in images or [] if upload.filename]
    if len(uploads) > MAX_IMAGES:
        raise HTTPException(
            status_code=400,
            detail=f"You can upload at most {MAX_IMAGES} images",
        )

    saved = []
    try:
        for upload in uploads:
            saved.append(storage.save_upload(upload, "donations", prefix="donation-"))
    except Exception:
        for path in saved:
            storage.delete_upload(path)
        raise
    return saved


def _get_owned_donation(session: SessionDep, donation_id: int, user: User, action: str) -> Donation:
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise HTTPException(status_code=404, detail="Donation not found")
    if donation.user_id != user.id:
        raise HTTPException(
            status_code=403,
            detail=f"Not authorized to {action} this donation",
        )
    return donation


@router.get("", response_model=List[DonationRead])
def list_donations(
    session: SessionDep,
    type: Optional[DonationType] = None,
    status: Optional[str] = None,
    city: Optional[str] = None,
):
    """
    List donations newest first, optionally filtered by type, status and city.
    """
    query = select(Donation).order_by(Donation.created_at.desc(), Donation.id.desc())

    if type is not None:
        query = query.where(Donation.type == type)

    if status is not None:
        query = query.where(Donation.status == status)

    donations = session.exec(query).all()
    if city is not None:
        wanted = city.strip().lower()
        donations = [
            d for d in donations
            if (d.location or {}).get("city", "").strip().lower() == wanted
        ]
    return donations


@router.get("/public", response_model=List[DonationPublic])
def list_public_donations(session: SessionDep):
    """
    Available donations only, without the owner reference.
    """
    return session.exec(
        select(Donation)
        .where(Donation.status == "available")
        .order_by(Donation.created_at.desc(), Donation.id.desc())
    ).all()


@router.get("/stats", response_model=DonationStats)
def donation_stats(session: SessionDep):
    def count(model) -> int:
        return session.exec(select(func.count()).select_from(model)).one()

    return {
        "total_donations": count(Donation),
        "ngo_count": count(NGO),
        "volunteer_count": count(Volunteer),
        "user_count": count(User),
        "request_count": count(Request),
    }


@router.get("/my-donations", response_model=List[DonationRead])
def my_donations(session: SessionDep, current: CurrentUserDep):
    user = current["user"]
    return session.exec(
        select(Donation)
        .where(Donation.user_id == user.id)
        .order_by(Donation.created_at.desc(), Donation.id.desc())
    ).all()


@router.post("", status_code=201, response_model=DonationRead)
@router.post("/create", status_code=201, response_model=DonationRead)
def create_donation(
    session: SessionDep,
    current: CurrentUserDep,
    type: DonationType = Form(...),
    title: str = Form(..., min_length=1),
    description: str = Form(..., min_length=1),
    quantity: str = Form(..., min_length=1),
    location: str = Form(...),
    availability: Optional[str] = Form(default=None),
    food_type: Optional[str] = Form(default=None),
    images: Optional[List[UploadFile]] = File(default=None),
):
    """
    Create a donation owned by the caller. `location` and `availability`
    arrive as JSON-encoded strings alongside up to five `images` files.
    """
    user = current["user"]

    parsed_location = parse_json_field(location, Location, "location")
    if parsed_location is None:
        raise HTTPException(status_code=400, detail="location is required")
    parsed_availability = parse_json_field(availability, Availability, "availability")

    image_paths = _save_images(images)

    donation = Donation(
        user_id=user.id,
        type=type,
        title=title.strip(),
        description=description.strip(),
        donor_name=user.name or "Anonymous",
        quantity=quantity.strip(),
        food_type=food_type or None,
        images=image_paths,
        availability=parsed_availability.model_dump() if parsed_availability else {},
        location=parsed_location.model_dump(),
        status="available",
    )

    try:
        session.add(donation)
        session.commit()
    except Exception:
        session.rollback()
        for path in image_paths:
            storage.delete_upload(path)
        raise

    session.refresh(donation)
    logger.info("User %s created donation %s", user.id, donation.id)
    return donation


@router.get("/{donation_id}", response_model=DonationDetail)
def get_donation(donation_id: int, session: SessionDep, current: CurrentUserDep):
    """
    Get a single donation with its owner's public profile.
    """
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise HTTPException(status_code=404, detail="Donation not found")
    return {"donation": donation, "owner": session.get(User, donation.user_id)}


@router.put("/{donation_id}", response_model=DonationRead)
def update_donation(
    donation_id: int,
    session: SessionDep,
    current: CurrentUserDep,
    type: Optional[DonationType] = Form(default=None),
    title: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    quantity: Optional[str] = Form(default=None),
    food_type: Optional[str] = Form(default=None),
    location: Optional[str] = Form(default=None),
    availability: Optional[str] = Form(default=None),
    images: Optional[List[UploadFile]] = File(default=None),
):
    """
    Owner-only edit. Only fields that are sent are replaced; newly sent images
    replace all stored ones.
    """
    donation = _get_owned_donation(session, donation_id, current["user"], "update")

    parsed_location = parse_json_field(location, Location, "location")
    parsed_availability = parse_json_field(availability, Availability, "availability")

    for field, value in (("title", title), ("description", description), ("quantity", quantity)):
        if value is not None:
            if not value.strip():
                raise HTTPException(status_code=400, detail=f"{field} cannot be empty")
            setattr(donation, field, value.strip())

    if type is not None:
        donation.type = type
    if food_type is not None:
        donation.food_type = food_type or None
    if parsed_location is not None:
        donation.location = parsed_location.model_dump()
    if parsed_availability is not None:
        donation.availability = parsed_availability.model_dump()

    new_paths = _save_images(images)
    if new_paths:
        for old_path in donation.images or []:
            storage.delete_upload(old_path)
        donation.images = new_paths

    donation.updated_at = utcnow()
    session.add(donation)
    session.commit()
    session.refresh(donation)
    return donation


@router.patch("/{donation_id}/status", response_model=DonationRead)
def update_donation_status(
    donation_id: int,
    update: DonationStatusUpdate,
    session: SessionDep,
    current: CurrentUserDep,
):
    donation = _get_owned_donation(session, donation_id, current["user"], "update")
    return lifecycle.change_donation_status(session, donation, update.status)


@router.delete("/{donation_id}")
def delete_donation(donation_id: int, session: SessionDep, current: CurrentUserDep):
    donation = _get_owned_donation(session, donation_id, current["user"], "delete")
    lifecycle.remove_donation(session, donation)
    logger.info("User %s deleted donation %s", current["user_id"], donation_id)
    return {"message": "Donation removed"}
