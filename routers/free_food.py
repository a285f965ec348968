import logging
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from sqlmodel import select

import storage
from db import SessionDep
from models import FreeFoodListing, User, utcnow
from schemas import FreeFoodAvailability, FreeFoodLocation, FreeFoodRead
from .auth import CurrentUserDep
from .forms import parse_json_field

logger = logging.getLogger(__name__)

router = APIRouter(tags=["free-food"])

LIST_LIMIT = 20


def _get_own_listing(session: SessionDep, listing_id: int, user: User, action: str) -> FreeFoodListing:
    listing = session.get(FreeFoodListing, listing_id)
    if listing is None:
        raise HTTPException(status_code=404, detail="Listing not found")
    if listing.uploaded_by != user.id:
        raise HTTPException(
            status_code=403,
            detail=f"Not authorized to {action} this listing",
        )
    return listing


@router.get("", response_model=List[FreeFoodRead])
def list_listings(session: SessionDep):
    return session.exec(
        select(FreeFoodListing)
        .order_by(FreeFoodListing.created_at.desc(), FreeFoodListing.id.desc())
        .limit(LIST_LIMIT)
    ).all()


@router.get("/my-listings", response_model=List[FreeFoodRead])
def my_listings(session: SessionDep, current: CurrentUserDep):
    return session.exec(
        select(FreeFoodListing)
        .where(FreeFoodListing.uploaded_by == current["user"].id)
        .order_by(FreeFoodListing.created_at.desc(), FreeFoodListing.id.desc())
    ).all()


@router.get("/{listing_id}", response_model=FreeFoodRead)
def get_listing(listing_id: int, session: SessionDep):
    listing = session.get(FreeFoodListing, listing_id)
    if listing is None:
        raise HTTPException(status_code=404, detail="Listing not found")
    return listing


@router.post("", status_code=201, response_model=FreeFoodRead)
def create_listing(
    session: SessionDep,
    current: CurrentUserDep,
    type: Optional[str] = Form(default=None),
    venue: Optional[str] = Form(default=None),
    food_type: Optional[str] = Form(default=None),
    organized_by: Optional[str] = Form(default=None),
    availability: Optional[str] = Form(default=None),
    location: Optional[str] = Form(default=None),
    venue_image: Optional[UploadFile] = File(default=None),
):
    parsed_availability = parse_json_field(availability, FreeFoodAvailability, "availability")
    parsed_location = parse_json_field(location, FreeFoodLocation, "location")

    image_path = None
    if venue_image is not None and venue_image.filename:
        image_path = storage.save_upload(venue_image, "free-food", prefix="venue-")

    listing = FreeFoodListing(
        uploaded_by=current["user"].id,
        type=type,
        venue=venue,
        food_type=food_type,
        organized_by=organized_by,
        availability=parsed_availability.model_dump() if parsed_availability else {},
        location=parsed_location.model_dump() if parsed_location else {},
        venue_image=image_path,
    )
    try:
        session.add(listing)
        session.commit()
    except Exception:
        session.rollback()
        storage.delete_upload(image_path)
        raise
    session.refresh(listing)
    return listing


@router.put("/{listing_id}", response_model=FreeFoodRead)
def update_listing(
    listing_id: int,
    session: SessionDep,
    current: CurrentUserDep,
    type: Optional[str] = Form(default=None),
    venue: Optional[str] = Form(default=None),
    food_type: Optional[str] = Form(default=None),
    organized_by: Optional[str] = Form(default=None),
    availability: Optional[str] = Form(default=None),
    location: Optional[str] = Form(default=None),
    venue_image: Optional[UploadFile] = File(default=None),
):
    listing = _get_own_listing(session, listing_id, current["user"], "update")

    parsed_availability = parse_json_field(availability, FreeFoodAvailability, "availability")
    parsed_location = parse_json_field(location, FreeFoodLocation, "location")

    for field, value in (
        ("type", type),
        ("venue", venue),
        ("food_type", food_type),
        ("organized_by", organized_by),
    ):
        if value is not None:
            setattr(listing, field, value)
    if parsed_availability is not None:
        listing.availability = parsed_availability.model_dump()
    if parsed_location is not None:
        listing.location = parsed_location.model_dump()

    if venue_image is not None and venue_image.filename:
        new_path = storage.save_upload(venue_image, "free-food", prefix="venue-")
        if listing.venue_image:
            storage.delete_upload(listing.venue_image)
        listing.venue_image = new_path

    listing.updated_at = utcnow()
    session.add(listing)
    session.commit()
    session.refresh(listing)
    return listing


@router.delete("/{listing_id}")
def delete_listing(listing_id: int, session: SessionDep, current: CurrentUserDep):
    listing = _get_own_listing(session, listing_id, current["user"], "delete")
    image = listing.venue_image
    session.delete(listing)
    session.commit()
    if image:
        storage.delete_upload(image)
    return {"message": "Listing deleted successfully"}
