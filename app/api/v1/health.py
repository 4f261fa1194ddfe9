"""Health check endpoint."""

from fastapi import APIRouter
import platform
import sys

router = APIRouter()

# Set by main.py during lifespan
_dispatcher = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


@router.get("/health")
async def health_check():
    """Service health, audit queue capacity, and system info."""
    queue = None
    if _dispatcher is not None:
        status = await _dispatcher.get_status()
        queue = {
            "running": _dispatcher.running,
            **status.capacity.model_dump(),
            "pending": status.queue.pending,
        }

    return {
        "status": "healthy" if queue is not None and queue["running"] else "starting",
        "queue": queue,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
