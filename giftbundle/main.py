"""
Gift Bundles Backend — FastAPI Entry Point

Initializes logging and the FastAPI app and registers the route handlers.
"""

import logging

from fastapi import FastAPI

from giftbundle.api.bundles import router as bundles_router
from giftbundle.core.config import PROJECT_NAME, get_settings

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title=f"{PROJECT_NAME} API",
    description="Themed gift bundles from a short recipient description",
    version="0.1.0",
)

# --- Register API routers ---
app.include_router(bundles_router)


@app.get("/health")
async def health_check():
    """Health check endpoint. Returns service status."""
    return {"status": "ok"}
