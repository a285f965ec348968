"""
Donation lifecycle.

A donation moves forward only: available -> requested -> completed.
"pending" is reserved and never entered. Requests are claims against a
donation; the first accepted request moves it to "requested".
"""
import logging
from typing import Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import update
from sqlmodel import Session, select

import storage
from models import Donation, Request as RequestModel, User, utcnow
from schemas import RequestCreate

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = ("available", "pending")


def _conflict(message: str, code: str, **extra) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"message": message, "code": code, **extra},
    )


def _unclaimable(donation: Donation) -> HTTPException:
    if donation.status == "requested":
        return _conflict(
            "This donation has already been requested",
            "DONATION_ALREADY_REQUESTED",
            current_status=donation.status,
        )
    return _conflict(
        "This donation is no longer available",
        "DONATION_UNAVAILABLE",
        current_status=donation.status,
    )


def claim_donation(session: Session, donation_id: int) -> bool:
    """
    Flip a claimable donation to "requested" in one conditional UPDATE.
    False means another caller got there first (or it was never claimable).
    """
    result = session.exec(
        update(Donation)
        .where(
            Donation.id == donation_id,
            Donation.status.in_(CLAIMABLE_STATUSES),
        )
        .values(status="requested", updated_at=utcnow())
    )
    return result.rowcount == 1


def open_request(
    session: Session,
    payload: RequestCreate,
    requester: User,
) -> Tuple[RequestModel, Donation]:
    """
    Create a request and mark its donation requested, as one transaction.
    """
    donation = session.get(Donation, payload.donation_id)
    if donation is None:
        raise HTTPException(status_code=404, detail="Donation not found")

    if donation.user_id == requester.id:
        raise HTTPException(
            status_code=403, detail="You cannot request your own donation"
        )

    if donation.status not in CLAIMABLE_STATUSES:
        raise _unclaimable(donation)

    if not claim_donation(session, donation.id):
        session.rollback()
        session.refresh(donation)
        logger.info("Lost claim on donation %s to a concurrent request", donation.id)
        raise _unclaimable(donation)

    new_request = RequestModel(
        user_id=requester.id,
        donation_id=donation.id,
        requestor_name=payload.requestor_name,
        contact_number=payload.contact_number,
        address=payload.address,
        reason=payload.reason,
        urgency=payload.urgency,
        status="pending",
    )
    session.add(new_request)
    session.commit()
    session.refresh(new_request)
    session.refresh(donation)
    logger.info(
        "Request %s opened on donation %s by user %s",
        new_request.id,
        donation.id,
        requester.id,
    )
    return new_request, donation


def set_request_status(
    session: Session,
    request_id: int,
    status: str,
    actor: User,
) -> Tuple[RequestModel, Donation]:
    """Only the owner of the requested donation may move a request."""
    db_request = session.get(RequestModel, request_id)
    if db_request is None:
        raise HTTPException(status_code=404, detail="Request not found")

    donation = session.get(Donation, db_request.donation_id)
    if donation is None:
        raise HTTPException(status_code=404, detail="Associated donation not found")

    if donation.user_id != actor.id:
        raise HTTPException(
            status_code=403,
            detail="You can only manage requests for your own donations.",
        )

    db_request.status = status
    db_request.updated_at = utcnow()
    session.add(db_request)
    session.commit()
    session.refresh(db_request)
    return db_request, donation


def change_donation_status(
    session: Session, donation: Donation, status: str
) -> Donation:
    """
    Manual status changes only ever complete a donation. "requested" is set
    by opening a request and "pending" is reserved.
    """
    if status != "completed" or donation.status == "completed":
        raise _conflict(
            f"Cannot move a donation from {donation.status} to {status}",
            "INVALID_TRANSITION",
            current_status=donation.status,
        )
    donation.status = "completed"
    donation.updated_at = utcnow()
    session.add(donation)
    session.commit()
    session.refresh(donation)
    return donation


def remove_donation(session: Session, donation: Donation) -> None:
    """Delete a donation together with every request against it."""
    images = list(donation.images or [])
    for req in session.exec(
        select(RequestModel).where(RequestModel.donation_id == donation.id)
    ).all():
        session.delete(req)
    session.flush()
    session.delete(donation)
    session.commit()

    for image in images:
        storage.delete_upload(image)


def format_location(location: Optional[dict]) -> str:
    location = location or {}
    parts = [location.get(k) for k in ("address", "area", "city", "state")]
    return ", ".join(p for p in parts if p)


def request_details(
    db_request: RequestModel,
    donation: Donation,
    donor: Optional[User],
    requester: Optional[User],
) -> dict:
    """Plain-data summary for notification emails, safe to use after the session closes."""
    return {
        "request_id": db_request.id,
        "status": db_request.status,
        "requestor_name": db_request.requestor_name,
        "contact_number": db_request.contact_number,
        "address": db_request.address,
        "reason": db_request.reason,
        "urgency": db_request.urgency,
        "requester_email": requester.email if requester else None,
        "donation_id": donation.id,
        "donation_title": donation.title,
        "donation_type": donation.type,
        "quantity": donation.quantity,
        "location": format_location(donation.location),
        "donor_name": donor.name if donor else donation.donor_name,
        "donor_email": donor.email if donor else None,
    }
