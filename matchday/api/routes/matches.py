"""Match API endpoints.

Request and response bodies use camelCase. Participation actions and cancel
require an Idempotency-Key header; a retry with the same key and body
returns the first response unchanged.
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from matchday.api.dependencies import get_actor_id, get_idempotency_key, get_match_service
from matchday.services.matches.queries import MatchListView, MatchPage
from matchday.services.matches.service import MatchService
from matchday.services.matches.snapshot import MatchSnapshot

router = APIRouter(prefix="/api/v1/matches", tags=["matches"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RevisionRequest(CamelModel):
    """Body of every transition: the revision the client last saw."""

    expected_revision: int = Field(..., ge=1)


class CreateMatchRequest(CamelModel):
    title: str
    starts_at: datetime
    capacity: int
    location: str | None = None


class UpdateMatchRequest(RevisionRequest):
    """Partial update. Omitted fields are left untouched."""

    title: str | None = None
    starts_at: datetime | None = None
    location: str | None = None
    capacity: int | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={"expected_revision"})


class InviteRequest(RevisionRequest):
    """Invite target: userId, or identifier (@username, username or email)."""

    user_id: str | None = None
    identifier: str | None = None


class AdminRequest(RevisionRequest):
    user_id: uuid.UUID


@router.post("", response_model=MatchSnapshot, status_code=201)
async def create_match(
    data: CreateMatchRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: MatchService = Depends(get_match_service),
):
    """Create a match owned by the caller."""
    return await service.create_match(
        actor_id=actor_id,
        title=data.title,
        starts_at=data.starts_at,
        capacity=data.capacity,
        location=data.location,
    )


@router.get("", response_model=MatchPage)
async def list_matches(
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: MatchService = Depends(get_match_service),
    view: MatchListView = Query(MatchListView.UPCOMING),
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1, alias="pageSize"),
    starts_from: datetime | None = Query(None, alias="from"),
    starts_to: datetime | None = Query(None, alias="to"),
):
    """
    List the caller's matches.

    upcoming: not cancelled and not yet played, soonest first.
    history: cancelled or played, most recent first.
    """
    return await service.list_matches(
        actor_id=actor_id,
        page=page,
        page_size=page_size,
        view=view,
        starts_from=starts_from,
        starts_to=starts_to,
    )


@router.get("/{match_id}", response_model=MatchSnapshot)
async def get_match(
    match_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: MatchService = Depends(get_match_service),
):
    return await service.get_match(match_id, actor_id=actor_id)


@router.patch("/{match_id}", response_model=MatchSnapshot)
async def update_match(
    match_id: uuid.UUID,
    data: UpdateMatchRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: MatchService = Depends(get_match_service),
):
    """Update title, start time, location or capacity (creator only)."""
    return await service.update(
        match_id,
        actor_id=actor_id,
        expected_revision=data.expected_revision,
        changes=data.changes(),
    )


@router.post("/{match_id}/lock", response_model=MatchSnapshot)
async def lock_match(
    match_id: uuid.UUID,
    data: RevisionRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: MatchService = Depends(get_match_service),
):
    return await service.lock(match_id, actor_id=actor_id, expected_revision=data.expected_revision)


@router.post("/{match_id}/unlock", response_model=MatchSnapshot)
async def unlock_match(
    match_id: uuid.UUID,
    data: RevisionRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: MatchService = Depends(get_match_service),
):
    return await service.unlock(match_id, actor_id=actor_id, expected_revision=data.expected_revision)


@router.post("/{match_id}/cancel", response_model=MatchSnapshot)
async def cancel_match(
    match_id: uuid.UUID,
    data: RevisionRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    service: MatchService = Depends(get_match_service),
):
    return await service.cancel(
        match_id,
        actor_id=actor_id,
        expected_revision=data.expected_revision,
        idempotency_key=idempotency_key,
    )


@router.post("/{match_id}/confirm", response_model=MatchSnapshot)
async def confirm(
    match_id: uuid.UUID,
    data: RevisionRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    service: MatchService = Depends(get_match_service),
):
    """Confirm a seat, or join the waitlist when the match is full."""
    return await service.confirm(
        match_id,
        actor_id=actor_id,
        expected_revision=data.expected_revision,
        idempotency_key=idempotency_key,
    )


@router.post("/{match_id}/decline", response_model=MatchSnapshot)
async def decline(
    match_id: uuid.UUID,
    data: RevisionRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    service: MatchService = Depends(get_match_service),
):
    return await service.decline(
        match_id,
        actor_id=actor_id,
        expected_revision=data.expected_revision,
        idempotency_key=idempotency_key,
    )


@router.post("/{match_id}/withdraw", response_model=MatchSnapshot)
async def withdraw(
    match_id: uuid.UUID,
    data: RevisionRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    service: MatchService = Depends(get_match_service),
):
    """Give up a seat. Allowed even when the match is locked."""
    return await service.withdraw(
        match_id,
        actor_id=actor_id,
        expected_revision=data.expected_revision,
        idempotency_key=idempotency_key,
    )


@router.post("/{match_id}/leave", response_model=MatchSnapshot)
async def leave(
    match_id: uuid.UUID,
    data: RevisionRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    service: MatchService = Depends(get_match_service),
):
    """Leave the match entirely, handing over the creator role if needed."""
    return await service.leave(
        match_id,
        actor_id=actor_id,
        expected_revision=data.expected_revision,
        idempotency_key=idempotency_key,
    )


@router.post("/{match_id}/invite", response_model=MatchSnapshot)
async def invite(
    match_id: uuid.UUID,
    data: InviteRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    service: MatchService = Depends(get_match_service),
):
    return await service.invite(
        match_id,
        actor_id=actor_id,
        expected_revision=data.expected_revision,
        idempotency_key=idempotency_key,
        user_id=data.user_id,
        identifier=data.identifier,
    )


@router.post("/{match_id}/admins", response_model=MatchSnapshot)
async def promote_admin(
    match_id: uuid.UUID,
    data: AdminRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: MatchService = Depends(get_match_service),
):
    """Grant match-admin rights to a participant (creator only)."""
    return await service.promote_admin(
        match_id,
        actor_id=actor_id,
        target_user_id=data.user_id,
        expected_revision=data.expected_revision,
    )


@router.delete("/{match_id}/admins/{user_id}", response_model=MatchSnapshot)
async def demote_admin(
    match_id: uuid.UUID,
    user_id: uuid.UUID,
    data: RevisionRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: MatchService = Depends(get_match_service),
):
    return await service.demote_admin(
        match_id,
        actor_id=actor_id,
        target_user_id=user_id,
        expected_revision=data.expected_revision,
    )
