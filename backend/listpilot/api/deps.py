"""Shared API dependencies."""

from fastapi import Depends, Header, HTTPException, Request
from sqlmodel import Session

from listpilot.core.context import TurnContext
from listpilot.core.database import get_session
from listpilot.models.account import User


def get_turn_context(
    x_user_id: int | None = Header(default=None),
    session: Session = Depends(get_session),
) -> TurnContext:
    """The acting user comes from X-User-Id; authentication happens upstream."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user = session.get(User, x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user")
    return TurnContext(user_id=user.id, organization_id=user.organization_id)


def get_services(request: Request):
    return request.app.state.services
