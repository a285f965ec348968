import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, HTTPException
from sqlmodel import select

import lifecycle
from db import SessionDep
from models import Donation, Request as RequestModel, User
from notifications import NotifierDep
from schemas import (
    DonationRead,
    RequestCreate,
    RequestRead,
    RequestStatusUpdate,
    RequestWithDonation,
)
from .auth import CurrentUserDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requests"])


def _with_donation(req: RequestModel, donation) -> RequestWithDonation:
    return RequestWithDonation(
        **RequestRead.model_validate(req).model_dump(),
        donation=DonationRead.model_validate(donation) if donation else None,
    )


@router.post("", status_code=201, response_model=RequestWithDonation)
def create_request(
    request_data: RequestCreate,
    session: SessionDep,
    current: CurrentUserDep,
    notifier: NotifierDep,
    background_tasks: BackgroundTasks,
):
    """
    Request a donation. The donation flips to "requested"; a second request
    against it is refused with the donation's current status.
    """
    requester = current["user"]
    new_request, donation = lifecycle.open_request(session, request_data, requester)

    details = lifecycle.request_details(
        new_request, donation, session.get(User, donation.user_id), requester
    )
    background_tasks.add_task(notifier.send_request_created, details)

    return _with_donation(new_request, donation)


@router.get("/my-requests", response_model=List[RequestWithDonation])
def my_requests(session: SessionDep, current: CurrentUserDep):
    user = current["user"]
    rows = session.exec(
        select(RequestModel, Donation)
        .join(Donation, Donation.id == RequestModel.donation_id, isouter=True)
        .where(RequestModel.user_id == user.id)
        .order_by(RequestModel.created_at.desc(), RequestModel.id.desc())
    ).all()
    return [_with_donation(req, donation) for req, donation in rows]


@router.get("/donation/{donation_id}", response_model=List[RequestRead])
def requests_for_donation(
    donation_id: int,
    session: SessionDep,
    current: CurrentUserDep,
):
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise HTTPException(status_code=404, detail="Donation not found")
    if donation.user_id != current["user"].id:
        raise HTTPException(
            status_code=403,
            detail="You can only view requests for your own donations.",
        )
    return session.exec(
        select(RequestModel)
        .where(RequestModel.donation_id == donation_id)
        .order_by(RequestModel.created_at.desc(), RequestModel.id.desc())
    ).all()


@router.get("/{request_id}", response_model=RequestWithDonation)
def get_request(request_id: int, session: SessionDep, current: CurrentUserDep):
    user = current["user"]
    req = session.get(RequestModel, request_id)
    if req is None:
        raise HTTPException(status_code=404, detail="Request not found")
    donation = session.get(Donation, req.donation_id)
    if req.user_id != user.id and (donation is None or donation.user_id != user.id):
        raise HTTPException(status_code=403, detail="Not authorized")
    return _with_donation(req, donation)


@router.patch("/{request_id}/status", response_model=RequestWithDonation)
def update_request_status(
    request_id: int,
    update: RequestStatusUpdate,
    session: SessionDep,
    current: CurrentUserDep,
    notifier: NotifierDep,
    background_tasks: BackgroundTasks,
):
    """
    The donation's owner approves, rejects or completes a request; the
    requester hears about it by email.
    """
    db_request, donation = lifecycle.set_request_status(
        session, request_id, update.status, current["user"]
    )

    details = lifecycle.request_details(
        db_request,
        donation,
        current["user"],
        session.get(User, db_request.user_id),
    )
    background_tasks.add_task(notifier.send_request_status, details)

    return _with_donation(db_request, donation)


@router.delete("/{request_id}")
def delete_request(request_id: int, session: SessionDep, current: CurrentUserDep):
    user = current["user"]
    req = session.get(RequestModel, request_id)
    if req is None:
        raise HTTPException(status_code=404, detail="Request not found")
    if req.user_id != user.id:
        raise HTTPException(
            status_code=403,
            detail="You can only delete your own requests.",
        )
    session.delete(req)
    session.commit()
    return {"message": "Request removed"}
