"""
Status Panel - Local read-only view of the kiosk agent

This FastAPI application serves a small page for technicians standing at
the device. It shows:
- Last known kiosk flag and enforcement state
- Configured target and error counters
- Recent activity and the number of logs waiting for upload

Live updates come from the Local Bridge (port 8002). Serve on port 8001
(different from setup wizard on 8080).
"""

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from pathlib import Path
import logging

from ..services.local_store import get_local_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("StatusPanel")

BASE_DIR = Path(__file__).parent
TEMPLATES_DIR = BASE_DIR / "templates"

app = FastAPI(title="Kiosk Agent Status")

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _read_status():
    store = get_local_store()
    return {
        "kiosk": store.get_status_snapshot(),
        "pending_sync_count": store.get_pending_count()
    }


@app.get("/", response_class=HTMLResponse)
async def status_page(request: Request):
    """Serve the status page."""
    status = _read_status()
    return templates.TemplateResponse(request, "status.html", {
        "local_bridge_url": f"ws://{request.url.hostname or 'localhost'}:{app.state.bridge_port}",
        "kiosk": status["kiosk"] or {},
        "pending_sync_count": status["pending_sync_count"],
        "recent_logs": get_local_store().get_recent_logs(10)
    })


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/status")
async def get_status():
    """Latest enforcement snapshot."""
    try:
        status = _read_status()
    except Exception as e:
        logger.error(f"Status read failed: {e}")
        return {"kiosk": None, "pending_sync_count": None, "error": str(e)}
    return status


@app.get("/api/activity")
async def get_activity(limit: int = 50):
    """Recent activity log entries, newest first."""
    limit = max(1, min(limit, 500))
    return {"logs": get_local_store().get_recent_logs(limit)}


app.state.bridge_port = 8002


def start_status_panel(port: int = 8001, bridge_port: int = 8002):
    """Start the status panel server."""
    import uvicorn
    app.state.bridge_port = bridge_port
    logger.info(f"Starting Status Panel on http://0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


if __name__ == "__main__":
    import sys
    ports = [int(arg) for arg in sys.argv[1:3]]
    start_status_panel(*ports)
