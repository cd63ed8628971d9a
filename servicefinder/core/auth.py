from typing import Optional

from fastapi import Depends, HTTPException, Request

from ..services.supabase_service import get_user_from_token
from .session import Session


def extract_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split("Bearer ", 1)[1].strip() or None


def current_session(request: Request) -> Session:
    """Session for the caller; anonymous when no bearer token is sent.

    A token that the identity provider rejects is a 401, not an anonymous
    session.
    """
    token = extract_bearer_token(request)
    if not token:
        return Session()
    return Session(user=get_user_from_token(token), access_token=token)


def require_session(session: Session = Depends(current_session)) -> Session:
    if not session.is_authenticated:
        raise HTTPException(status_code=401, detail="Please sign in to continue")
    return session
