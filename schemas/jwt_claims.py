"""
Access Token Claims Schema
Defines the signed identity assertion carried by every bearer token
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RoleEnum(str, Enum):
    """Member role granted at login"""
    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"


class TokenClaims(BaseModel):
    """
    Token claims structure

    CONTRACT: exp is an absolute expiry in epoch milliseconds
    """
    model_config = ConfigDict(extra="ignore")

    discord_id: str = Field(..., min_length=1, description="Subject (Discord user id)")
    username: Optional[str] = Field(default=None, description="Display name")
    avatar: Optional[str] = Field(default=None, description="Avatar hash or URL")
    game_id: Optional[str] = Field(default=None)
    is_admin: bool = Field(default=False)
    role: RoleEnum = Field(default=RoleEnum.MEMBER)
    exp: int = Field(..., description="Expiry, epoch milliseconds")

    @property
    def subject(self) -> str:
        return self.discord_id
