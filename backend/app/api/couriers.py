from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error
from backend.app.core.exceptions import ServiceError
from backend.app.core.store import run_with_store_retry
from backend.app.schemas import CourierCreate, CourierUpdate
from backend.app.services.couriers import CourierService

router = APIRouter()


@router.get("")
async def list_couriers(active_only: bool = False, session: AsyncSession = Depends(get_session)):
    service = CourierService(session)
    try:
        return await run_with_store_retry(
            session, lambda: service.list_couriers(active_only=active_only), operation="courier.list", commit=False
        )
    except ServiceError as e:
        handle_service_error(e)


@router.get("/eligible")
async def eligible_couriers(
    sector_id: int,
    service_date: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
):
    """Couriers covering the sector, with flags and the day's assignment count."""
    service = CourierService(session)
    try:
        return await run_with_store_retry(
            session,
            lambda: service.list_eligible_couriers(sector_id, service_date),
            operation="courier.eligible",
            commit=False,
        )
    except ServiceError as e:
        handle_service_error(e)


@router.post("", status_code=201)
async def create_courier(data: CourierCreate, session: AsyncSession = Depends(get_session)):
    service = CourierService(session)
    try:
        return await run_with_store_retry(
            session, lambda: service.create_courier(data.model_dump()), operation="courier.create"
        )
    except ServiceError as e:
        handle_service_error(e)


@router.put("/{courier_id}")
async def update_courier(courier_id: int, data: CourierUpdate, session: AsyncSession = Depends(get_session)):
    service = CourierService(session)
    try:
        return await run_with_store_retry(
            session,
            lambda: service.update_courier(courier_id, data.model_dump(exclude_unset=True)),
            operation="courier.update",
        )
    except ServiceError as e:
        handle_service_error(e)
