from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
import time
import logging

from .api.v1.admin import router as admin_router
from .api.v1.auth import router as auth_router
from .api.v1.doctors import router as doctors_router
from .api.v1.staff import router as staff_router
from .core.config import settings
from .core.database import SessionLocal, bootstrap_admin, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Clinic appointment booking with race-safe slot reservation",
    openapi_url="/api/v1/openapi.json",
)

# The booking frontend is served from a separate origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed:.4f}s)"
    )
    return response

for router in (auth_router, doctors_router, staff_router, admin_router):
    app.include_router(router, prefix="/api/v1")

# Doctor profile images
app.mount(
    settings.MEDIA_URL,
    StaticFiles(directory=settings.MEDIA_ROOT, check_dir=False),
    name="media"
)

@app.on_event("startup")
async def startup_event():
    """Create tables and the first admin account."""
    init_db()
    logger.info(f"Database ready at {settings.get_database_url.split('://')[0]}")

    db = SessionLocal()
    try:
        bootstrap_admin(db)
    finally:
        db.close()

@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.VERSION}

@app.get("/")
async def root():
    return {"message": f"{settings.APP_NAME} API", "docs": "/docs", "health": "/health"}

@app.get("/api/v1/info")
async def api_info():
    """List the API's route groups."""
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "endpoints": {
            "authentication": "/api/v1/auth",
            "doctors": "/api/v1/doctors",
            "staff": "/api/v1/staff",
            "admin": "/api/v1/admin",
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("clinic_booking.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
