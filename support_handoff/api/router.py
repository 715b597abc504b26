from fastapi import APIRouter

from support_handoff.api.v1.routes import health, operator, realtime, widget

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(widget.router, prefix="/v1/widget", tags=["widget"])
api_router.include_router(operator.router, prefix="/v1/operator", tags=["operator"])
api_router.include_router(realtime.router, prefix="/v1/realtime", tags=["realtime"])
