from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthUser(BaseModel):
    """
    Staff member authenticated by a bearer token on admin billing routes.
    """

    user_id: str = Field(..., alias="sub")
    email: Optional[str] = None
    role: str = "staff"

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "service_role")
