"""Schemas related to the sign-in flow."""

from __future__ import annotations

from pydantic import BaseModel


class AuthorizationResponse(BaseModel):
    authorization_url: str


__all__ = ["AuthorizationResponse"]
