from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, get_cache, handle_service_error
from backend.app.core.exceptions import NotFoundError, ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.store import run_with_store_retry
from backend.app.schemas import SectorCreate, SectorUpdate, SectorResponse, ActiveToggle
from backend.app.services.cache import CacheService
from backend.app.services.sectors import SectorService

router = APIRouter()
logger = get_logger(__name__)


@router.get("", response_model=list[SectorResponse])
async def list_sectors(
    city_name: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    cached = await cache.get_sectors(city_name)
    if cached is not None:
        return cached
    service = SectorService(session)
    try:
        sectors = await run_with_store_retry(
            session, lambda: service.list_sectors(city_name=city_name), operation="sector.list", commit=False
        )
    except ServiceError as e:
        handle_service_error(e)
    await cache.set_sectors(sectors, city_name)
    return sectors


@router.get("/by-pincode/{pincode}", response_model=SectorResponse)
async def get_sector_by_pincode(
    pincode: str,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    cached = await cache.get_sector_for_pincode(pincode)
    if cached is not None:
        return cached
    service = SectorService(session)
    try:
        sector = await run_with_store_retry(
            session, lambda: service.find_by_pincode(pincode), operation="sector.by_pincode", commit=False
        )
        if sector is None:
            raise NotFoundError("Sector for pincode", pincode)
    except ServiceError as e:
        handle_service_error(e)
    await cache.set_sector_for_pincode(pincode, sector)
    return sector


@router.post("", response_model=SectorResponse, status_code=201)
async def create_sector(
    data: SectorCreate,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = SectorService(session)
    try:
        sector = await run_with_store_retry(
            session, lambda: service.create_sector(data.model_dump()), operation="sector.create"
        )
    except ServiceError as e:
        handle_service_error(e)
    await cache.invalidate_sectors()
    return sector


@router.put("/{sector_id}", response_model=SectorResponse)
async def update_sector(
    sector_id: int,
    data: SectorUpdate,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = SectorService(session)
    try:
        sector = await run_with_store_retry(
            session,
            lambda: service.update_sector(sector_id, data.model_dump(exclude_unset=True)),
            operation="sector.update",
        )
    except ServiceError as e:
        handle_service_error(e)
    await cache.invalidate_sectors()
    return sector


@router.post("/{sector_id}/toggle", response_model=SectorResponse)
async def toggle_sector(
    sector_id: int,
    data: ActiveToggle,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = SectorService(session)
    try:
        sector = await run_with_store_retry(
            session, lambda: service.set_active(sector_id, data.is_active), operation="sector.toggle"
        )
    except ServiceError as e:
        handle_service_error(e)
    await cache.invalidate_sectors()
    return sector


@router.delete("/{sector_id}")
async def delete_sector(
    sector_id: int,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = SectorService(session)
    try:
        await run_with_store_retry(session, lambda: service.delete_sector(sector_id), operation="sector.delete")
    except ServiceError as e:
        handle_service_error(e)
    await cache.invalidate_sectors()
    return {"status": "ok", "id": sector_id}
