import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from ..models.user import User
from .auth import get_optional_user


@dataclass
class RequestContext:
    """Who is acting and from where, passed explicitly into every operation."""

    user_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    correlation_id: str = ""

    def __post_init__(self):
        if not self.correlation_id:
            self.correlation_id = uuid.uuid4().hex

    @classmethod
    def system(cls) -> "RequestContext":
        return cls(user_agent="system")


def get_request_context(
    request: Request,
    current_user: Optional[User] = Depends(get_optional_user),
) -> RequestContext:
    return RequestContext(
        user_id=current_user.id if current_user else None,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        correlation_id=request.headers.get("x-request-id") or "",
    )
