import logging
import re

from fastapi import APIRouter, HTTPException, status
from sqlmodel import Session, select

from config import settings
from db import SessionDep
from models import MockAadhaar, utcnow
from otp import OtpStore, RateLimiter, hash_aadhaar, mask_aadhaar
from responses import ok
from schemas import AadhaarConfirm, AadhaarStart
from .auth import DonorDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/aadhaar", tags=["aadhaar"])

AADHAAR_PATTERN = re.compile(r"^\d{12}$")

otp_store = OtpStore(settings.otp_ttl_seconds, settings.otp_max_attempts)
otp_limiter = RateLimiter(settings.otp_rate_limit, settings.otp_rate_window_seconds)

# Demo identities for the mock verification flow
MOCK_AADHAAR_RECORDS = [
    {"aadhaar": "234567890123", "name": "Asha Verma", "linked_phone": "9876543210"},
    {"aadhaar": "345678901234", "name": "Rahul Mehta", "linked_phone": "9123456780"},
    {"aadhaar": "456789012345", "name": "Priya Nair", "linked_phone": "9988776655"},
]


def seed_mock_aadhaar(session: Session) -> int:
    """Insert the demo identities that are missing. Returns how many were added."""
    added = 0
    for record in MOCK_AADHAAR_RECORDS:
        exists = session.exec(
            select(MockAadhaar).where(MockAadhaar.aadhaar == record["aadhaar"])
        ).first()
        if exists is None:
            session.add(MockAadhaar(**record))
            added += 1
    if added:
        session.commit()
    return added


@router.post("/start-aadhaar-verify")
def start_verification(body: AadhaarStart, session: SessionDep, current: DonorDep):
    """
    Send an OTP to the phone linked with the given Aadhaar number.
    """
    if not otp_limiter.hit(str(current.user_id)):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many OTP requests, please try again later",
        )

    if not AADHAAR_PATTERN.match(body.aadhaar):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid Aadhaar number. Must be 12 digits.",
        )

    if current.user.is_aadhaar_verified:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Aadhaar already verified",
        )

    record = session.exec(
        select(MockAadhaar).where(MockAadhaar.aadhaar == body.aadhaar)
    ).first()
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Aadhaar number not found in our records",
        )

    code = otp_store.issue(body.aadhaar)
    last_four = record.linked_phone[-4:]
    # No SMS gateway in the mock flow; the code only goes to the server log
    logger.info("OTP for phone ending %s (user %s): %s", last_four, current.user_id, code)

    return ok(
        {"masked_phone": f"XXXXXX{last_four}"},
        message=f"OTP sent to your Aadhaar-linked phone number ending in {last_four}",
    )


@router.post("/confirm-aadhaar-verify")
def confirm_verification(body: AadhaarConfirm, session: SessionDep, current: DonorDep):
    verified, reason = otp_store.verify(body.aadhaar, body.otp)
    if not verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=reason)

    user = current.user
    user.aadhaar_masked = mask_aadhaar(body.aadhaar)
    user.aadhaar_hash = hash_aadhaar(body.aadhaar)
    user.is_aadhaar_verified = True
    user.aadhaar_verified_at = utcnow()
    user.updated_at = user.aadhaar_verified_at
    session.add(user)
    session.commit()
    session.refresh(user)

    logger.info("User %s completed Aadhaar verification", user.id)
    return ok(
        {
            "aadhaar_masked": user.aadhaar_masked,
            "is_verified": True,
            "verified_at": user.aadhaar_verified_at,
        },
        message="Aadhaar verified successfully",
    )


@router.get("/aadhaar-status")
def verification_status(current: DonorDep):
    user = current.user
    return ok(
        {
            "aadhaar_masked": user.aadhaar_masked,
            "is_verified": user.is_aadhaar_verified,
            "verified_at": user.aadhaar_verified_at,
        }
    )
