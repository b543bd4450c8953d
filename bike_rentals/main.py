import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bike_rentals.api import routes
from bike_rentals.config import settings
from bike_rentals.database import engine, init_db
from bike_rentals.services.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create tables before the first request
init_db()

app = FastAPI(
    title=settings.app_name,
    description="Bike rental reservations: availability, holds, checkout and returns",
    debug=settings.debug,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes.router)


@app.on_event("startup")
async def startup_event():
    """Start the hold expiry sweeper"""
    start_scheduler()
    logger.info(
        "%s started on %s: holds last %d min, swept every %ds (%s)",
        settings.app_name,
        engine.dialect.name,
        settings.hold_minutes,
        settings.sweep_interval_seconds,
        settings.timezone,
    )


@app.on_event("shutdown")
async def shutdown_event():
    stop_scheduler()
    engine.dispose()
    logger.info("%s stopped", settings.app_name)


@app.get("/")
def read_root():
    return {
        "app": settings.app_name,
        "timezone": settings.timezone,
        "hold_minutes": settings.hold_minutes,
        "endpoints": {
            "availability": "/availability",
            "hold": "/bookings/hold",
            "admin": "/admin/bookings",
            "fleet": "/admin/fleet",
            "health": "/health",
            "docs": "/docs",
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
