"""Password protection for the setup wizard."""

import base64
import binascii
import secrets
from typing import Callable

from fastapi import HTTPException, Request

REALM = 'Basic realm="Openclaw Setup"'


def _password_from_header(header: str) -> str | None:
    parts = header.strip().split(None, 1)
    if len(parts) != 2 or parts[0] != "Basic":
        return None
    try:
        decoded = base64.b64decode(parts[1].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    # Username is ignored; everything after the first colon is the password.
    _, sep, password = decoded.partition(":")
    return password if sep else ""


def require_setup_password(password: str) -> Callable:
    """Dependency that enforces HTTP Basic auth against SETUP_PASSWORD."""
    async def verify(request: Request) -> None:
        configured = str(password or "").strip()
        if not configured:
            raise HTTPException(
                status_code=500,
                detail="SETUP_PASSWORD is not set. Set it in your service variables before using /setup.",
            )

        provided = _password_from_header(request.headers.get("Authorization", ""))
        if provided is None:
            raise HTTPException(status_code=401, detail="Auth required", headers={"WWW-Authenticate": REALM})
        if not secrets.compare_digest(provided.encode("utf-8"), configured.encode("utf-8")):
            raise HTTPException(status_code=401, detail="Invalid password", headers={"WWW-Authenticate": REALM})
    return verify
