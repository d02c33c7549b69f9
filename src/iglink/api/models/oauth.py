"""Pydantic models for the Instagram OAuth endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class InstagramStartResponse(BaseModel):
    """Response from the start endpoint when ``redirect=false``.

    Returns the authorization URL that the user should visit to grant access.
    """

    authorization_url: str
    state: str
