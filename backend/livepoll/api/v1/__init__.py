from fastapi import APIRouter

from livepoll.api.v1.endpoints import polls, tables
from livepoll.api.v1.websocket import realtime_ws

api_router = APIRouter()
api_router.include_router(tables.router, tags=["tables"])
api_router.include_router(polls.router, tags=["polls"])
api_router.include_router(realtime_ws.router, tags=["realtime"])
