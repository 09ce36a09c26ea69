from uuid import UUID

from pydantic import BaseModel, ConfigDict

from shared.constants import Role


class Principal(BaseModel):
    """Authenticated identity carried by an access token; used by all services."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: UUID
    role: Role
