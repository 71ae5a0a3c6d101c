from pydantic import BaseModel, ConfigDict, Field

from libs.auth.roles import UserRole


class AuthUser(BaseModel):
    """
    The authenticated principal for the current request.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    role: UserRole = UserRole.CUSTOMER
