"""
Services module for kioskwatch.

Provides the enforcement loop, boot-time launch, restart watchdog, backend
client, local storage and activity sync.
"""

from .models import KioskFlag, EngineState, AppTarget, UrlTarget, RemoteConfig, parse_target
from .errors import KioskError, ConfigFetchError, LaunchFailure, ResolutionFailure, OverlayStartFailure
from .local_store import LocalStore, get_local_store
from .api_client import KioskApiClient
from .enforcement import EnforcementEngine, run_single_cycle
from .bootstrap import BootstrapSequencer, BootResult
from .watchdog import WatchdogSupervisor
from .sync_manager import SyncManager, init_sync_manager, get_sync_manager

__all__ = [
    'KioskFlag',
    'EngineState',
    'AppTarget',
    'UrlTarget',
    'RemoteConfig',
    'parse_target',
    'KioskError',
    'ConfigFetchError',
    'LaunchFailure',
    'ResolutionFailure',
    'OverlayStartFailure',
    'LocalStore',
    'get_local_store',
    'KioskApiClient',
    'EnforcementEngine',
    'run_single_cycle',
    'BootstrapSequencer',
    'BootResult',
    'WatchdogSupervisor',
    'SyncManager',
    'init_sync_manager',
    'get_sync_manager',
]
