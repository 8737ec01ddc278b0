"""
Input validation utilities for request parameters.

Stripe ids are checked for shape only; whether they exist is Stripe's call.
"""
import re

from fastapi import HTTPException, Query

_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
_SESSION_ID_RE = re.compile(r"^cs_(test|live)_[A-Za-z0-9]+$")


def validate_zip_code(zip_code: str) -> str:
    """
    Validate a US ZIP or ZIP+4 code.

    Raises:
        HTTPException(400) if the code is malformed
    """
    zip_code = (zip_code or "").strip()
    if not _ZIP_RE.match(zip_code):
        raise HTTPException(status_code=400, detail=f"Invalid ZIP code: {zip_code!r}")
    return zip_code[:5]


def validate_session_id(session_id: str) -> str:
    """Validate the shape of a Stripe Checkout session id (cs_test_... / cs_live_...)."""
    if not session_id:
        raise HTTPException(status_code=400, detail="Checkout session id is required")
    if len(session_id) > 255 or not _SESSION_ID_RE.match(session_id):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid checkout session id: {session_id[:16]}...",
        )
    return session_id


def validated_session_query(session_id: str = Query(..., description="Stripe Checkout session id")) -> str:
    """FastAPI dependency for the ?session_id= the checkout success page carries."""
    return validate_session_id(session_id)
