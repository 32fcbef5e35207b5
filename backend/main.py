import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from db.database import engine, Base, run_startup_migrations
from api.library import router as library_router
from api.templates import router as templates_router
from api.calendar import router as calendar_router
from api.tracking import router as tracking_router
from api.progress import router as progress_router
from api.trends import router as trends_router
from services.errors import PlanError

logging.basicConfig(
    level=getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

settings.validate_configuration()

# Create all tables
Base.metadata.create_all(bind=engine)
run_startup_migrations()

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PlanError)
async def plan_error_handler(request: Request, exc: PlanError):
    if exc.status_code >= 409:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Routers
app.include_router(library_router, prefix="/api")
app.include_router(templates_router, prefix="/api")
app.include_router(calendar_router, prefix="/api")
app.include_router(tracking_router, prefix="/api")
app.include_router(progress_router, prefix="/api")
app.include_router(trends_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME, "environment": settings.ENVIRONMENT}
