"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fleetcore.api.v1.endpoints import (
    assignments, stock, quota, integrity,
    vehicles, users, catalog, tenant
)

router = APIRouter()

# Core: assignments, stock, quota, integrity
router.include_router(assignments.router)
router.include_router(stock.router)
router.include_router(quota.router)
router.include_router(integrity.router)

# Fleet registry
router.include_router(vehicles.router)
router.include_router(users.router)
router.include_router(catalog.router)
router.include_router(tenant.router)
