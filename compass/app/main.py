"""FastAPI application."""

from fastapi import FastAPI

from compass.app.api.errors import compass_error_handler
from compass.app.api.routes.convert import router as convert_router
from compass.app.api.routes.health import router as health_router
from compass.app.api.routes.metrics import router as metrics_router
from compass.app.api.routes.sessions import router as sessions_router
from compass.app.errors import CompassError

app = FastAPI(title="Nomad's Compass Itinerary API", version="0.1.0")

# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(convert_router)
app.include_router(sessions_router)

app.add_exception_handler(CompassError, compass_error_handler)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Nomad's Compass Itinerary API", "version": "0.1.0"}
