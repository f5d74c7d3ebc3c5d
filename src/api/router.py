from __future__ import annotations

from fastapi import APIRouter

from src.api.agent_bookings import router as agent_bookings_router
from src.api.health import router as health_router
from src.api.rate_entries import router as rate_entries_router
from src.api.travel_agents import router as travel_agents_router
from src.api.travel_dashboard import router as travel_dashboard_router


api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(travel_agents_router)
api_router.include_router(agent_bookings_router)
api_router.include_router(rate_entries_router)
api_router.include_router(travel_dashboard_router)
