from typing import Optional
from fastapi import Depends, Header, HTTPException, Request, status
from itsdangerous import BadSignature
from pydantic import BaseModel

from .utils import read_token


class Identity(BaseModel):
    """Caller identity as issued by the upstream identity provider."""

    user_id: str
    email: str
    role: str = "buyer"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


def _bearer(authorization: Optional[str], x_access_token: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return x_access_token


def optional_identity(
    authorization: Optional[str] = Header(default=None),
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
) -> Optional[Identity]:
    candidate = _bearer(authorization, x_access_token)
    if not candidate:
        return None
    try:
        data = read_token(candidate)
    except BadSignature:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid identity token")
    if not isinstance(data, dict) or not data.get("user_id") or not data.get("email"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incomplete identity token")
    data["user_id"] = str(data["user_id"])
    data["email"] = data["email"].strip().lower()
    return Identity(**data)


def require_identity(identity: Optional[Identity] = Depends(optional_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing identity token")
    return identity


def request_origin(request: Request) -> dict:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
