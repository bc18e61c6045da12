from fastapi import FastAPI, APIRouter
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from pathlib import Path
from typing import List

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from .routes import chats_router, instances_router, messages_router, webhooks_router  # noqa: E402
from .whatsapp.container import get_whatsapp_container  # noqa: E402

# Configure logging
logging.basicConfig(level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper())
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="WhatsApp Sessions API")


def resolve_cors_allow_origins() -> List[str]:
    raw = (os.getenv("CORS_ALLOW_ORIGINS") or "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=resolve_cors_allow_origins(),
    allow_origin_regex=os.getenv("CORS_ALLOW_ORIGIN_REGEX") or None,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


# Healthcheck endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "whatsapp-sessions"}


# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


@api_router.get("/health")
async def api_health_check():
    return {"status": "healthy", "service": "whatsapp-sessions"}


api_router.include_router(instances_router)
api_router.include_router(messages_router)
api_router.include_router(chats_router)
api_router.include_router(webhooks_router)

# Include the router in the main app
app.include_router(api_router)


@app.on_event("startup")
async def startup_event():
    container = get_whatsapp_container()
    logger.info(
        "WhatsApp Sessions API started "
        f"(poll_interval_s={container.settings.poll_interval_s}, "
        f"max_poll_attempts={container.settings.max_poll_attempts}, "
        f"sandbox={container.settings.dev_sandbox_enabled})"
    )


@app.on_event("shutdown")
async def shutdown_event():
    await get_whatsapp_container().shutdown()
    logger.info("Pairing polls cancelled")
