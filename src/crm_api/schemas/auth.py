"""Authentication Pydantic v2 schemas."""

from uuid import UUID

from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    """JWT access token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiration in seconds")


class CurrentUserResponse(BaseModel):
    """The authenticated user and their tenant."""

    id: UUID
    client_id: UUID
    email: str
    role: str
    first_name: str | None = None
    last_name: str | None = None

    model_config = {"from_attributes": True}
