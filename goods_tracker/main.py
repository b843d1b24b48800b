import sys
import os
import asyncio
import logging
import subprocess
from pathlib import Path

from .services.api_client import SupabaseStore
from .services.coordinator import SyncCoordinator
from .services.local_db import LocalDatabase
from .services.offline_mode import ConnectivityObserver
from .services.read_cache import ReadCache
from .network.ws_local import LocalBridge
from .offline_kiosk.app import start_offline_kiosk


def load_env_file(path):
    """Simple replacement for load_dotenv to avoid external dependency."""
    if not os.path.exists(path): return
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if '=' in line and not line.startswith('#'):
                key, val = line.split('=', 1)
                os.environ[key] = val


# Constants
BASE_DIR = Path(__file__).resolve().parent.parent
CONFIG_DIR = BASE_DIR / "config"
SECRETS_PATH = CONFIG_DIR / "secrets.env"


def run_setup_wizard():
    """Launches the FastAPI Setup Wizard in a blocking sub-process."""
    port = os.getenv("WIZARD_PORT", "8080")
    print("=== STARTING SETUP WIZARD (Day-0) ===")
    print("[*] No configuration found.")
    print(f"[*] Launching Web Interface at http://0.0.0.0:{port}")
    print("[*] Please enter the Supabase project URL and anon key.")

    try:
        subprocess.run(
            ["uvicorn", "goods_tracker.setup_wizard.app:app", "--host", "0.0.0.0", "--port", port],
            check=True,
            cwd=BASE_DIR
        )
    except KeyboardInterrupt:
        print("\n[!] Wizard stopped.")
        sys.exit(0)
    except subprocess.CalledProcessError as e:
        # The wizard exits through SIGINT after saving; only a missing config is fatal
        if not SECRETS_PATH.exists():
            print(f"[!] Wizard crashed: {e}")
            sys.exit(1)


async def run(supabase_url, api_key, once=False):
    remote = SupabaseStore(
        supabase_url,
        api_key,
        timeout=float(os.getenv("REMOTE_TIMEOUT_SECONDS", "30"))
    )

    print("[*] Probing remote database...")
    online = await remote.ping()
    print(f"[*] Starting {'online' if online else 'OFFLINE'}")

    data_dir = os.getenv("GOODS_TRACKER_DATA_DIR")
    db = LocalDatabase(data_dir)
    observer = ConnectivityObserver(initially_online=online)
    coordinator = SyncCoordinator(db, ReadCache(data_dir), observer, remote)
    coordinator.on_notice(lambda level, message: print(f"[{level}] {message}"))
    coordinator.start()
    print(f"[*] Pending offline changes: {coordinator.pending_count}")

    try:
        if online:
            await coordinator.sync_now()
            loaded = await coordinator.load_remote()
            print(f"[*] Loaded {len(loaded['movements'] or [])} movements from {loaded['source']}")

        if once:
            print("[*] --once flag detected. Exiting.")
            return

        observer.start_probing(remote.ping, float(os.getenv("PROBE_INTERVAL_SECONDS", "15")))

        bridge = LocalBridge(coordinator)
        print("[*] Entering Main Loop...")
        await asyncio.gather(
            bridge.serve(port=int(os.getenv("BRIDGE_PORT", "8002"))),
            start_offline_kiosk(coordinator, port=int(os.getenv("KIOSK_PORT", "8001"))),
        )
    finally:
        coordinator.close()
        await remote.close()


def main():
    print("=== Goods Tracker Edge ===")

    # 1. Check for Provisioning
    if not SECRETS_PATH.exists():
        run_setup_wizard()
        print("[*] Wizard exited. Checking for config...")
        if not SECRETS_PATH.exists():
            print("[!] Still not provisioned. Exiting.")
            sys.exit(1)
        print("[*] Provisioned! Proceeding to boot...")

    # 2. Load Credentials
    load_env_file(SECRETS_PATH)
    supabase_url = os.getenv("SUPABASE_URL")
    api_key = os.getenv("SUPABASE_ANON_KEY")

    if not supabase_url or not api_key:
        print("[!] Invalid secrets.env. Missing SUPABASE_URL or SUPABASE_ANON_KEY.")
        sys.exit(1)

    logging.getLogger().setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    print(f"[*] Device: {os.getenv('DEVICE_NAME', 'unnamed')} @ {os.getenv('DEVICE_LOCATION', 'godown')}")

    try:
        asyncio.run(run(supabase_url, api_key, once="--once" in sys.argv))
    except KeyboardInterrupt:
        print("\n[!] Shutting down...")


if __name__ == "__main__":
    main()
