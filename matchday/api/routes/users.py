"""User lookup endpoint."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.api.dependencies import get_actor_id, get_db
from matchday.services.matches.snapshot import SnapshotModel
from matchday.services.users import UserDirectory

router = APIRouter(prefix="/api/v1/users", tags=["users"])


class UserResponse(SnapshotModel):
    id: uuid.UUID
    username: str | None = None
    email: str | None = None


@router.get("/lookup", response_model=UserResponse)
async def lookup_user(
    q: str = Query(..., min_length=1, description="@username, username or email"),
    actor_id: uuid.UUID = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Find a user to invite."""
    user = await UserDirectory(db).lookup(q)
    return UserResponse.model_validate(user)
