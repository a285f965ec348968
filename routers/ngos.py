import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel
from sqlmodel import select

import storage
from db import SessionDep
from models import NGO
from schemas import NGORead, NormalizedEmail
from .auth import CurrentUserDep
from .forms import build_model

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ngos"])

REQUIRED_FIELDS = (
    "organization_name",
    "organization_email",
    "phone_number",
    "ngo_type",
    "address",
)


class NGOCreate(BaseModel):
    organization_name: str
    organization_email: NormalizedEmail
    phone_number: str
    ngo_type: str
    address: str
    contact_person_name: Optional[str] = None
    contact_person_email: Optional[str] = None
    contact_person_phone: Optional[str] = None
    ngo_website: Optional[str] = None
    incorporation_date: Optional[date] = None
    social_media_links: Optional[str] = None


def _upload(upload: Optional[UploadFile], folder: str, label: str) -> Optional[str]:
    if upload is None or not upload.filename:
        return None
    try:
        return storage.save_upload(
            upload, folder, prefix=f"{label}-", allowed_types=storage.DOCUMENT_TYPES
        )
    except OSError:
        logger.exception("Error uploading %s", label)
        raise HTTPException(status_code=400, detail=f"Failed to upload {label}")


@router.get("", response_model=List[NGORead])
def list_ngos(session: SessionDep):
    return session.exec(select(NGO).order_by(NGO.created_at.desc(), NGO.id.desc())).all()


@router.post("/register", status_code=201)
def register_ngo(
    session: SessionDep,
    organization_name: Optional[str] = Form(default=None),
    organization_email: Optional[str] = Form(default=None),
    phone_number: Optional[str] = Form(default=None),
    ngo_type: Optional[str] = Form(default=None),
    address: Optional[str] = Form(default=None),
    contact_person_name: Optional[str] = Form(default=None),
    contact_person_email: Optional[str] = Form(default=None),
    contact_person_phone: Optional[str] = Form(default=None),
    ngo_website: Optional[str] = Form(default=None),
    incorporation_date: Optional[str] = Form(default=None),
    social_media_links: Optional[str] = Form(default=None),
    logo: Optional[UploadFile] = File(default=None),
    certification: Optional[UploadFile] = File(default=None),
):
    """
    Public NGO sign-up. Logo and certificate are stored first; the record is
    written with status "pending" only once both uploads succeeded.
    """
    values = {
        "organization_name": organization_name,
        "organization_email": organization_email,
        "phone_number": phone_number,
        "ngo_type": ngo_type,
        "address": address,
    }
    for field in REQUIRED_FIELDS:
        if not (values[field] or "").strip():
            raise HTTPException(status_code=400, detail=f"{field} is required")

    ngo_in = build_model(
        NGOCreate,
        **{k: v.strip() for k, v in values.items()},
        contact_person_name=contact_person_name or None,
        contact_person_email=contact_person_email or None,
        contact_person_phone=contact_person_phone or None,
        ngo_website=ngo_website or None,
        incorporation_date=incorporation_date or None,
        social_media_links=social_media_links or None,
    )

    existing = session.exec(
        select(NGO).where(NGO.organization_email == ngo_in.organization_email)
    ).first()
    if existing:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "An NGO with this email already exists",
                "code": "NGO_EMAIL_TAKEN",
            },
        )

    logo_url = _upload(logo, "ngo-logos", "logo")
    try:
        certification_url = _upload(certification, "ngo-certificates", "certification")
    except HTTPException:
        storage.delete_upload(logo_url)
        raise

    ngo = NGO(
        **ngo_in.model_dump(),
        logo=logo_url,
        certification=certification_url,
        status="pending",
    )
    try:
        session.add(ngo)
        session.commit()
    except Exception:
        session.rollback()
        storage.delete_upload(logo_url)
        storage.delete_upload(certification_url)
        raise
    session.refresh(ngo)
    logger.info("NGO %s registered (%s)", ngo.id, ngo.organization_email)

    return {
        "message": "NGO registration submitted successfully",
        "ngo": NGORead.model_validate(ngo),
    }


@router.get("/profile", response_model=NGORead)
def ngo_profile(session: SessionDep, current: CurrentUserDep):
    user = current["user"]
    ngo = session.get(NGO, user.ngo_id) if user.ngo_id else None
    if ngo is None:
        raise HTTPException(status_code=404, detail="NGO profile not found")
    return ngo
