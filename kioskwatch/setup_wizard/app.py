from fastapi import FastAPI, Request, UploadFile, File, Form, HTTPException
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
import json
import logging
import os
from pathlib import Path
import uvicorn
import signal
import threading
import time

from ..config import DEFAULT_BASE_URL, SECRETS_PATH, load_settings, save_secrets
from ..services.api_client import KioskApiClient
from ..services.device_identity import DeviceIdManager
from ..services.errors import ConfigFetchError
from ..services.local_store import get_local_store
from ..services.models import parse_target

logger = logging.getLogger("SetupWizard")

TEMPLATES_DIR = Path(__file__).parent / "templates"

app = FastAPI(title="Kiosk Agent Setup Wizard")
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

# Overridable by tests
app.state.secrets_path = SECRETS_PATH
app.state.shutdown_delay = 2.0
app.state.shutdown_enabled = True


def _should_verify_ssl(base_url):
    # Self-signed certificates are expected on local backends
    return not any(host in base_url for host in ('localhost', '127.0.0.1', '.local'))


def resolve_device_id(explicit=None):
    if explicit:
        return explicit
    return DeviceIdManager(get_local_store()).get_device_id()


def verify_credentials(base_url, api_key, device_id):
    """
    Fetches the kiosk config once with the given credentials.

    Returns (success, remote_config, error_msg).
    """
    server_url = base_url.rstrip('/')
    should_verify = _should_verify_ssl(server_url)
    client = KioskApiClient(base_url=server_url, api_key=api_key, ssl_verify=should_verify)

    logger.info(f"Verifying credentials for {device_id} at {server_url} (Verify: {should_verify})...")
    try:
        config = client.fetch_config(device_id)
    except ConfigFetchError as e:
        return False, None, str(e)
    return True, config, None


def shutdown(delay):
    """Shutdown the server after a short delay"""
    time.sleep(delay)
    os.kill(os.getpid(), signal.SIGINT)


def _provision(data):
    base_url = (data.get('base_url') or DEFAULT_BASE_URL).strip()
    api_key = (data.get('api_key') or '').strip()
    if not api_key:
        raise HTTPException(status_code=400, detail="Missing required field: api_key")
    device_id = resolve_device_id((data.get('device_id') or '').strip() or None)

    success, config, error_msg = verify_credentials(base_url, api_key, device_id)
    if not success:
        raise HTTPException(status_code=502, detail=f"Verification failed: {error_msg}")

    save_secrets({
        'base_url': base_url,
        'api_key': api_key,
        'device_id': data.get('device_id'),
        'ssl_verify': _should_verify_ssl(base_url)
    }, path=app.state.secrets_path)

    # The server-side target wins over one typed into the form
    target = config.target or parse_target(data.get('target'))
    if target is not None:
        get_local_store().save_cached_target(target)
        logger.info(f"Cached target: {target.describe()}")

    if app.state.shutdown_enabled:
        threading.Thread(target=shutdown, args=(app.state.shutdown_delay,), daemon=True).start()

    return {
        "status": "success",
        "message": "Verified! Setup successful. Restarting...",
        "device_id": device_id,
        "kiosk_mode": config.flag.value,
        "target": target.describe() if target else None
    }


@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    return templates.TemplateResponse(request, "index.html", {
        "device_id": resolve_device_id(),
        "default_base_url": DEFAULT_BASE_URL
    })


@app.post("/upload")
async def upload_config(file: UploadFile = File(...), base_url: str = Form(None)):
    if not file.filename.endswith('.json'):
        raise HTTPException(status_code=400, detail="Only JSON files allowed")

    content = await file.read()
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON file")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")

    if base_url:
        data['base_url'] = base_url
    return _provision(data)


@app.post("/manual")
async def manual_config(data: dict):
    return _provision(data)


def start_setup_wizard(port: int = 8080):
    logger.info(f"Starting Setup Wizard on http://0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    load_settings()
    start_setup_wizard()
