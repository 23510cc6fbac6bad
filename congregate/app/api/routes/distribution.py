"""Distribution endpoints - batches, allocations and planning views."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from congregate.app.api.auth import get_current_context
from congregate.app.api.deps import get_distribution
from congregate.app.db.context import AccessContext
from congregate.app.models.distribution import (
    AllocationResult,
    BatchDetail,
    BatchOverview,
    DistributionBatchRecord,
    GroupDistributionRecord,
    GroupsWithAttendance,
)
from congregate.app.services.distribution import DistributionAllocationEngine

router = APIRouter(prefix="/distribution", tags=["distribution"])

Actor = Annotated[AccessContext, Depends(get_current_context)]
Engine = Annotated[DistributionAllocationEngine, Depends(get_distribution)]


class ConfirmReceiptRequest(BaseModel):
    """Request body for POST /distribution/batches."""

    window_id: UUID
    total_food: int
    total_water: int


class AllocateRequest(BaseModel):
    """Request body for POST /distribution/batches/{batch_id}/allocations."""

    group_id: UUID
    food_amount: int
    water_amount: int
    allocation_type: str


class UpdateAllocationRequest(BaseModel):
    """Request body for PATCH /distribution/allocations/{allocation_id}."""

    food_amount: int | None = None
    water_amount: int | None = None
    allocation_type: str | None = None


@router.post("/batches", response_model=DistributionBatchRecord, status_code=status.HTTP_201_CREATED)
async def confirm_receipt(
    request: ConfirmReceiptRequest, actor: Actor, engine: Engine
) -> DistributionBatchRecord:
    """Confirm the resources received for a window."""
    return await engine.confirm_receipt(
        request.window_id, request.total_food, request.total_water, actor
    )


@router.get("/batches", response_model=list[DistributionBatchRecord])
async def list_batches(
    actor: Actor, engine: Engine, window_id: UUID | None = None
) -> list[DistributionBatchRecord]:
    """Confirmed batches, newest first."""
    return await engine.list_batches(actor, window_id=window_id)


@router.get("/batches/current", response_model=DistributionBatchRecord | None)
async def current_batch(actor: Actor, engine: Engine) -> DistributionBatchRecord | None:
    return await engine.current_batch(actor)


# Declared after /batches/current so "current" is not parsed as an id
@router.get("/batches/{batch_id}", response_model=BatchDetail)
async def get_batch(batch_id: UUID, actor: Actor, engine: Engine) -> BatchDetail:
    return await engine.get_batch(batch_id, actor)


@router.get("/overview", response_model=BatchOverview)
async def current_overview(actor: Actor, engine: Engine) -> BatchOverview:
    """Overview of the current cycle's latest batch."""
    return await engine.overview(actor=actor)


@router.get("/batches/{batch_id}/overview", response_model=BatchOverview)
async def batch_overview(batch_id: UUID, actor: Actor, engine: Engine) -> BatchOverview:
    return await engine.overview(batch_id, actor)


@router.get("/batches/{batch_id}/groups", response_model=GroupsWithAttendance)
async def groups_with_attendance(
    batch_id: UUID, actor: Actor, engine: Engine
) -> GroupsWithAttendance:
    """Every visible group with its attendance and allocation for the batch."""
    return await engine.groups_with_attendance(batch_id, actor)


@router.post(
    "/batches/{batch_id}/allocations",
    response_model=AllocationResult,
    status_code=status.HTTP_201_CREATED,
)
async def allocate(
    batch_id: UUID, request: AllocateRequest, actor: Actor, engine: Engine
) -> AllocationResult:
    """Allocate part of a batch to a group.

    Over-allocation is accepted; the overview reports negative remaining.
    """
    return await engine.allocate(
        batch_id,
        request.group_id,
        request.food_amount,
        request.water_amount,
        request.allocation_type,
        actor,
    )


@router.get("/allocations", response_model=list[GroupDistributionRecord])
async def list_allocations(
    actor: Actor,
    engine: Engine,
    batch_id: UUID | None = None,
    group_id: UUID | None = None,
) -> list[GroupDistributionRecord]:
    return await engine.list_allocations(actor, batch_id=batch_id, group_id=group_id)


@router.patch("/allocations/{allocation_id}", response_model=GroupDistributionRecord)
async def update_allocation(
    allocation_id: UUID, request: UpdateAllocationRequest, actor: Actor, engine: Engine
) -> GroupDistributionRecord:
    return await engine.update_allocation(
        allocation_id,
        actor,
        food_amount=request.food_amount,
        water_amount=request.water_amount,
        allocation_type=request.allocation_type,
    )
