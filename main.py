import sys
import os
import signal
import argparse
import logging
import subprocess
import threading
from pathlib import Path

from kioskwatch.config import SECRETS_PATH, load_settings
from kioskwatch.device import ConnectivityGate, ForegroundProbe, KioskOverlay, TargetLauncher
from kioskwatch.services.api_client import KioskApiClient
from kioskwatch.services.bootstrap import BootstrapSequencer
from kioskwatch.services.device_identity import DeviceIdManager
from kioskwatch.services.enforcement import EnforcementEngine, run_single_cycle
from kioskwatch.services.local_store import get_local_store
from kioskwatch.services.sync_manager import init_sync_manager
from kioskwatch.services.watchdog import PACKAGE_EVENTS, WatchdogSupervisor
from kioskwatch.utils.browser_manager import BrowserManager
from kioskwatch.utils.process_lock import ProcessLock

# Constants
BASE_DIR = Path(__file__).resolve().parent
MAIN_SCRIPT = Path(__file__).resolve()

logger = logging.getLogger("Main")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Kiosk enforcement agent")
    parser.add_argument("--once", action="store_true", help="run a single enforcement cycle and exit")
    parser.add_argument("--boot-only", action="store_true", help="run the boot launch sequence and exit")
    parser.add_argument("--watchdog-tick", action="store_true",
                        help="periodic check: start the agent if kiosk mode is on and no agent is running")
    parser.add_argument("--package-event", metavar="NAME",
                        help="the agent package was replaced/updated/restarted")
    parser.add_argument("--reset-device-id", action="store_true", help="forget the stored device id")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    return parser.parse_args(argv)


def run_setup_wizard(port):
    """Launches the FastAPI Setup Wizard in a blocking sub-process."""
    print("=== STARTING SETUP WIZARD (Day-0) ===")
    print("[*] No configuration found.")
    print(f"[*] Launching Web Interface at http://0.0.0.0:{port}")
    print("[*] Please enter the server URL and API key to provision.")

    try:
        subprocess.run(
            [sys.executable, "-m", "uvicorn", "kioskwatch.setup_wizard.app:app",
             "--host", "0.0.0.0", "--port", str(port)],
            cwd=BASE_DIR,
            check=True
        )
    except KeyboardInterrupt:
        print("\n[!] Wizard stopped.")
        sys.exit(0)
    except subprocess.CalledProcessError as e:
        # SIGINT after a successful setup is the normal way out
        if e.returncode not in (0, -signal.SIGINT):
            print(f"[!] Wizard crashed: {e}")
            sys.exit(1)


def spawn_agent():
    """Starts a detached agent process that outlives the caller."""
    process = subprocess.Popen(
        [sys.executable, str(MAIN_SCRIPT)],
        cwd=BASE_DIR,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True
    )
    print(f"[*] Spawned replacement agent (pid {process.pid})")
    return process


def start_local_services(settings):
    """Local WebSocket bridge and status panel, each in its own process."""
    processes = []
    print(f"[*] Starting Local WebSocket Bridge on port {settings.bridge_port}...")
    processes.append(subprocess.Popen(
        [sys.executable, "-m", "kioskwatch.network.ws_local", str(settings.bridge_port)],
        cwd=BASE_DIR
    ))
    print(f"[*] Starting Status Panel on port {settings.status_port}...")
    processes.append(subprocess.Popen(
        [sys.executable, "-m", "kioskwatch.status_panel.app",
         str(settings.status_port), str(settings.bridge_port)],
        cwd=BASE_DIR
    ))
    return processes


def stop_local_services(processes):
    for process in processes:
        process.terminate()
    for process in processes:
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()


def wait_for_shutdown(shutdown_requested):
    """Blocks until a stop signal arrives. Returns False when the operator pressed Ctrl+C."""
    try:
        while not shutdown_requested.wait(1):
            pass
    except KeyboardInterrupt:
        print("\n[!] Shutting down...")
        return False
    return True


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    logging.getLogger().setLevel(logging.DEBUG if args.debug else logging.INFO)

    print("=== Kiosk Enforcement Agent v1.0 ===")

    # 1. Check for Provisioning
    settings = load_settings()
    # Child processes (wizard, bridge, panel) open the same store
    os.environ["KIOSK_DATA_DIR"] = str(settings.data_dir)
    if not settings.is_provisioned:
        if args.watchdog_tick or args.package_event:
            print("[!] Not provisioned; nothing to supervise.")
            return 0
        run_setup_wizard(settings.wizard_port)
        print("[*] Wizard exited. Checking for config...")
        settings = load_settings()
        if not settings.is_provisioned:
            print(f"[!] Still not provisioned ({SECRETS_PATH} missing API key). Exiting.")
            return 1
        print("[*] Provisioned! Proceeding to boot...")

    # 2. Local Store & Identity
    store = get_local_store(
        settings.db_path,
        retention_days=settings.activity_retention_days,
        max_pending=settings.max_pending_logs
    )
    id_manager = DeviceIdManager(store, override=settings.device_id)

    if args.reset_device_id:
        id_manager.reset_device_id()
        print(f"[*] Device ID reset. New ID: {id_manager.get_device_id()}")
        return 0

    device_id = id_manager.get_device_id()
    print(f"[*] Device ID: {device_id}")
    print(f"[*] Server: {settings.base_url}")

    # 3. Backend Client
    client = KioskApiClient(
        base_url=settings.base_url,
        api_key=settings.api_key,
        timeout=settings.request_timeout,
        ssl_verify=settings.ssl_verify
    )

    lock = ProcessLock(settings.pid_path, signature=MAIN_SCRIPT.name)

    def ensure_agent():
        if lock.holder_alive():
            print(f"[*] Agent already running (pid {lock.read_pid()})")
            return None
        return spawn_agent()

    def fetch_flag():
        return client.fetch_flag(device_id)

    # 4. Out-of-process watchdog triggers
    if args.watchdog_tick or args.package_event:
        supervisor = WatchdogSupervisor(
            fetch_flag=fetch_flag,
            start_loop=ensure_agent,
            is_loop_running=lock.holder_alive,
            restart_delay=settings.restart_delay
        )
        if args.package_event:
            if args.package_event not in PACKAGE_EVENTS:
                print(f"[!] Unrecognized package event '{args.package_event}', checking anyway")
            supervisor.on_package_event(args.package_event)
        else:
            supervisor.on_periodic_wake()
        return 0

    # 5. Device Layer
    gate = ConnectivityGate(check_url=settings.connectivity_check_url)
    probe = ForegroundProbe()
    # Engine and bootstrap threads share this launcher; BrowserManager serializes them
    launcher = TargetLauncher(
        browser=BrowserManager(settings.browser_command, startup_grace=settings.browser_startup_grace)
    )
    overlay = KioskOverlay(settings.overlay_command) if settings.overlay_command else None

    engine = EnforcementEngine(
        client=client,
        device_id=device_id,
        store=store,
        probe=probe,
        launcher=launcher,
        overlay=overlay,
        check_interval=settings.check_interval,
        background_interval=settings.background_interval,
        penalty_interval=settings.penalty_interval,
        max_consecutive_errors=settings.max_consecutive_errors
    )

    bootstrap = BootstrapSequencer(
        client=client,
        device_id=device_id,
        store=store,
        gate=gate,
        launcher=launcher,
        settle_delay=settings.boot_settle_delay,
        retry_delay=settings.boot_retry_delay,
        max_attempts=settings.boot_max_attempts
    )

    if args.once:
        delay = run_single_cycle(engine)
        status = engine.get_status(next_delay=delay)
        print(f"[*] Kiosk mode: {status['last_flag']} | target: {status['target']} | next delay: {delay}s")
        return 0

    if args.boot_only:
        result = bootstrap.run()
        print(f"[*] Boot sequence finished: {result.value} after {bootstrap.attempts} attempts")
        return 0

    # 6. Long-running agent
    if not lock.acquire():
        print(f"[!] Another agent is running (pid {lock.read_pid()}). Exiting.")
        return 1

    sync_manager = init_sync_manager(
        settings.base_url, settings.api_key, device_id, store=store, ssl_verify=settings.ssl_verify
    )

    watchdog = WatchdogSupervisor(
        fetch_flag=fetch_flag,
        start_loop=engine.start,
        is_loop_running=engine.is_running,
        restart_delay=settings.restart_delay,
        interval=settings.watchdog_interval
    )

    def heartbeat():
        logger.debug("Heartbeat...")
        client.heartbeat(device_id, engine.get_status())

    def sync_activity():
        if gate.is_reachable():
            sync_manager.sync_now()

    watchdog.on_wake(heartbeat)
    watchdog.on_wake(sync_activity)

    # Killed while kiosk mode was on: a detached replacement takes over
    respawner = WatchdogSupervisor(
        fetch_flag=fetch_flag,
        start_loop=spawn_agent,
        restart_delay=settings.restart_delay
    )
    respawn_on_exit = {"enabled": True}

    def on_engine_teardown(last_flag):
        if respawn_on_exit["enabled"]:
            lock.release()
            respawner.on_teardown(last_flag)

    engine.on_teardown(on_engine_teardown)

    shutdown_requested = threading.Event()

    def handle_signal(signum, frame):
        print(f"\n[!] Received signal {signum}, shutting down...")
        shutdown_requested.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGHUP, handle_signal)

    local_services = start_local_services(settings)

    print("[*] Starting enforcement loop...")
    engine.start()

    print("[*] Starting boot launch sequence...")
    boot_thread = threading.Thread(target=bootstrap.run, name="kiosk-bootstrap", daemon=True)
    boot_thread.start()

    watchdog.start_periodic()

    print("[*] Agent running. Press Ctrl+C to stop.")
    respawn_on_exit["enabled"] = wait_for_shutdown(shutdown_requested)

    watchdog.stop()
    bootstrap.stop_event.set()
    # Free the bridge and panel ports before a replacement can start
    stop_local_services(local_services)
    engine.teardown()
    lock.release()
    print("[*] Agent stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
