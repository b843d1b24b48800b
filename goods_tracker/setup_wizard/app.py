from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse
import logging
import os
from pathlib import Path
import signal
import threading
import time

import uvicorn

from ..services.api_client import verify_credentials

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SetupWizard")

# Paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent
CONFIG_DIR = BASE_DIR / "config"

LOCATIONS = ("godown", "big_shop", "small_shop")

app = FastAPI(title="Goods Tracker Setup Wizard")

INDEX_HTML = """<!doctype html>
<html>
<head><title>Goods Tracker Setup</title></head>
<body>
<h1>Goods Tracker Setup</h1>
<form id="setup">
  <label>Supabase URL <input name="supabase_url" required></label><br>
  <label>Anon key <input name="anon_key" required></label><br>
  <label>Device name <input name="device_name" required></label><br>
  <label>Location
    <select name="location">
      <option value="godown">Godown</option>
      <option value="big_shop">Big Shop</option>
      <option value="small_shop">Small Shop</option>
    </select>
  </label><br>
  <button type="submit">Verify and save</button>
</form>
<pre id="result"></pre>
<script>
document.getElementById('setup').onsubmit = async (e) => {
  e.preventDefault();
  const body = Object.fromEntries(new FormData(e.target));
  const res = await fetch('/manual', {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body)});
  document.getElementById('result').textContent = JSON.stringify(await res.json(), null, 2);
};
</script>
</body>
</html>
"""


def shutdown():
    """Shutdown the server after a short delay"""
    time.sleep(2)
    os.kill(os.getpid(), signal.SIGINT)


@app.get("/", response_class=HTMLResponse)
async def index():
    return INDEX_HTML


@app.post("/manual")
async def manual_config(data: dict):
    required_fields = ["supabase_url", "anon_key", "device_name"]
    for field in required_fields:
        if not data.get(field):
            raise HTTPException(status_code=400, detail=f"Missing required field: {field}")

    location = data.get("location", "godown")
    if location not in LOCATIONS:
        raise HTTPException(status_code=400, detail=f"Unknown location: {location}")

    # Verify Credentials BEFORE Saving
    success, _, error_msg = verify_credentials(data["supabase_url"], data["anon_key"])
    if not success:
        raise HTTPException(status_code=502, detail=f"Verification failed: {error_msg}")

    try:
        save_credentials({**data, "location": location})
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Could not save credentials: {e}")

    # Trigger shutdown in background
    threading.Thread(target=shutdown).start()

    return {"status": "success", "message": "Verified! Setup successful. Restarting..."}


def save_credentials(data):
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    env_path = CONFIG_DIR / "secrets.env"
    with open(env_path, "w") as f:
        f.write(f"SUPABASE_URL={data['supabase_url'].rstrip('/')}\n")
        f.write(f"SUPABASE_ANON_KEY={data['anon_key']}\n")
        f.write(f"DEVICE_NAME={data['device_name']}\n")
        f.write(f"DEVICE_LOCATION={data.get('location', 'godown')}\n")
        f.write(f"GENERATED_AT={time.strftime('%Y-%m-%d %H:%M:%S')}\n")
    logger.info(f"Credentials saved to {env_path}")


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("WIZARD_PORT", "8080")))
