from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from replydesk.core.config import settings
from replydesk.core.logging import get_logger
from replydesk.api.deps import get_scheduler
from replydesk.api.routes import health, messages

logger = get_logger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
)

allowed_origins = ["*"]
if settings.ALLOWED_ORIGINS and settings.ALLOWED_ORIGINS != "*":
    allowed_origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["Health"])
app.include_router(messages.router, prefix=settings.API_V1_STR, tags=["Messages"])


@app.on_event("startup")
async def startup_event():
    """Startup event handler."""
    logger.info(f"{settings.PROJECT_NAME} is starting up...")


@app.on_event("shutdown")
async def shutdown_event():
    """Let scheduled evaluations finish before the process exits."""
    logger.info(f"{settings.PROJECT_NAME} is shutting down...")
    await get_scheduler().drain()
