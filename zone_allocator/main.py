from fastapi import FastAPI
import logging

from zone_allocator.api.routes import router
from zone_allocator.surface_store import clear_surfaces

app = FastAPI(title="zone-allocator", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@app.on_event("shutdown")
async def _shutdown() -> None:
    # Allocators hold timers on this loop; cancel them before it closes.
    clear_surfaces()


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "zone-allocator", "version": "0.1.0"}
