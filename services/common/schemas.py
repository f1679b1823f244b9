# CREATE FILE: services/common/schemas.py

from typing import Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field

from .domain import ActorContext, Role
from .errors import (
    AdmissionError, CartAccessError, InactiveProductError, InvalidStateCodeError,
    InvariantViolationError, NotFoundError, PortalError, RoutingServiceError, StoreError
)


class ActorModel(BaseModel):
    """Resolved session actor as sent by the portal's auth layer"""
    user_id: str = Field(..., min_length=1)
    role: str = Field(..., description="admin, topline, downline, practice or provider")
    practice_id: Optional[str] = None
    provider_id: Optional[str] = None
    linked_rep_id: Optional[str] = None
    topline_rep_id: Optional[str] = None

    def to_actor(self) -> ActorContext:
        try:
            role = Role.parse(self.role)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown role: {self.role}")
        return ActorContext(
            user_id=self.user_id,
            role=role,
            practice_id=self.practice_id,
            provider_id=self.provider_id,
            linked_rep_id=self.linked_rep_id,
            topline_rep_id=self.topline_rep_id,
        )


def http_error_for(error: PortalError) -> HTTPException:
    """Map a core error onto the HTTP status the portal UI expects"""
    if isinstance(error, (AdmissionError, InvalidStateCodeError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, CartAccessError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InactiveProductError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, RoutingServiceError):
        return HTTPException(status_code=502, detail="Routing service unavailable, please retry")
    if isinstance(error, StoreError):
        return HTTPException(status_code=503, detail="Data store unavailable, please retry")
    if isinstance(error, InvariantViolationError):
        return HTTPException(status_code=500, detail="Internal error while saving the cart line")
    return HTTPException(status_code=500, detail=str(error))
