"""
learnchat/models/account.py

Account and organization models.

Role hierarchy:
- owner: organization purchaser (can buy credits, change plans, manage everything)
- admin: organization admin (allocates credits, manages members, no purchasing)
- member: organization member (governed by an allocation)
- individual: user outside any organization
"""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict

UserType = Literal["individual", "member", "admin", "owner"]

ORG_ADMIN_TYPES = {"admin", "owner"}
PURCHASER_TYPES = {"individual", "owner"}


class Organization(BaseModel):
    model_config = ConfigDict(frozen=True)

    organization_id: str
    name: str
    plan: str


class Account(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    user_type: UserType = "individual"
    organization_id: Optional[str] = None
    individual_plan: Optional[str] = None
    organization_plan: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def in_organization(self) -> bool:
        return self.organization_id is not None and self.user_type != "individual"

    @property
    def is_member(self) -> bool:
        return self.in_organization and self.user_type == "member"

    @property
    def is_org_admin(self) -> bool:
        return self.in_organization and self.user_type in ORG_ADMIN_TYPES

    @property
    def can_purchase_credits(self) -> bool:
        return self.user_type in PURCHASER_TYPES
