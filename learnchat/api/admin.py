"""
Organization administration routes.

- PATCH /v1/admin/members/{member_id}/role   owner only
- GET   /v1/admin/allocations                admin/owner
- PUT   /v1/admin/allocations/{member_id}    admin/owner override
"""
from typing import Dict, Literal, Optional

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, Field, field_validator

from learnchat.core.auth import get_current_account
from learnchat.features.credits.allocations import list_allocations, set_allocation
from learnchat.features.users.service import update_member_role
from learnchat.models.account import Account
from learnchat.models.credit import CreditAllocation

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class RoleUpdateRequest(BaseModel):
    role: Literal["admin", "member"]


class AllocationRequest(BaseModel):
    allocated_points: int = Field(..., ge=0)
    used_points: Optional[int] = Field(None, ge=0)
    note: Optional[str] = None

    @field_validator("note")
    @classmethod
    def _trim(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


def _allocation_out(allocation: CreditAllocation) -> Dict:
    return {
        "id": allocation.id,
        "organizationId": allocation.organization_id,
        "userId": allocation.user_id,
        "allocatedPoints": allocation.allocated_points,
        "usedPoints": allocation.used_points,
        "remaining": allocation.remaining,
        "periodStart": allocation.period_start.isoformat(),
        "periodEnd": allocation.period_end.isoformat(),
        "note": allocation.note,
    }


@router.patch("/members/{member_id}/role")
def update_role_endpoint(
    body: RoleUpdateRequest,
    member_id: str = Path(..., description="Member user ID"),
    actor: Account = Depends(get_current_account),
) -> Dict:
    updated = update_member_role(actor, member_id, body.role)
    return {"userId": updated.user_id, "role": updated.user_type, "organizationId": updated.organization_id}


@router.get("/allocations")
def list_allocations_endpoint(actor: Account = Depends(get_current_account)) -> Dict:
    items = list_allocations(actor)
    return {"items": [_allocation_out(a) for a in items], "total": len(items)}


@router.put("/allocations/{member_id}")
def set_allocation_endpoint(
    body: AllocationRequest,
    member_id: str = Path(..., description="Member user ID"),
    actor: Account = Depends(get_current_account),
) -> Dict:
    allocation = set_allocation(
        actor,
        member_id,
        body.allocated_points,
        used_points=body.used_points,
        note=body.note,
    )
    return _allocation_out(allocation)
