"""Public catalog of notarization services, options and add-ons."""
from fastapi import APIRouter

from services.catalog import get_catalog

router = APIRouter(prefix="/api/catalog", tags=["catalog"])


@router.get("/services")
async def list_services():
    return get_catalog()
