# src/campus_sync/api/entities.py
"""
Entity endpoints - local-first CRUD for offices, levels and students.

Every write lands in the Local Store and the mutation queue; nothing here
talks to the remote store directly.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException, Response
from pydantic import ValidationError as PydanticValidationError

from ..errors import CampusSyncError
from ..sync.coordinator import SyncCoordinator
from .deps import get_coordinator, get_repository, to_http_exception
from .models import CREATE_MODELS, UPDATE_MODELS, APIResponse, CreatedResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse(models: dict, kind: str, body: Dict[str, Any]):
    try:
        return models[kind].model_validate(body)
    except PydanticValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False)) from e


@router.get("/{kind}", response_model=List[Dict[str, Any]])
async def list_entities(kind: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    """List live (not soft-deleted) rows ordered by local id."""
    repo = get_repository(coordinator, kind)
    try:
        return await repo.list()
    except CampusSyncError as e:
        raise to_http_exception(e) from e


@router.post("/{kind}", response_model=CreatedResponse, status_code=201)
async def create_entity(
    kind: str,
    body: Dict[str, Any] = Body(...),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """
    Create a row locally and queue it for push.

    Returns 409 if another live row already uses the name.
    """
    repo = get_repository(coordinator, kind)
    fields = _parse(CREATE_MODELS, kind, body).model_dump(exclude_none=True)
    try:
        created = await repo.create(fields)
    except CampusSyncError as e:
        raise to_http_exception(e) from e
    return CreatedResponse(**created)


@router.put("/{kind}/{local_id}", response_model=APIResponse)
async def update_entity(
    kind: str,
    local_id: int,
    body: Dict[str, Any] = Body(...),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """
    Update an existing row.

    Only updates fields that are provided.
    Returns 404 if the row is missing or soft-deleted.
    """
    repo = get_repository(coordinator, kind)
    changes = _parse(UPDATE_MODELS, kind, body).model_dump(exclude_unset=True)
    try:
        row = await repo.update(local_id, changes)
    except CampusSyncError as e:
        raise to_http_exception(e) from e
    return APIResponse(
        success=True,
        message=f"{repo.schema.display_name.capitalize()} updated",
        data={"local_id": local_id, "uuid": row["uuid"], "operation_type": row["operation_type"]},
    )


@router.delete("/{kind}/{local_id}", status_code=204)
async def delete_entity(
    kind: str,
    local_id: int,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """
    Soft-delete a row.

    Returns 204 No Content on success, 404 if the row is missing or already deleted.
    """
    repo = get_repository(coordinator, kind)
    try:
        await repo.soft_delete(local_id)
    except CampusSyncError as e:
        raise to_http_exception(e) from e
    return Response(status_code=204)
