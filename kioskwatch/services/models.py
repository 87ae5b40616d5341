"""
models.py - Value types shared by the enforcement services.

Targets are a closed pair of frozen dataclasses; code that needs to act on a
target dispatches with isinstance() on exactly these two kinds.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class KioskFlag(Enum):
    """Remote kiosk_mode observation."""
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNKNOWN = "unknown"    # Poll failed this cycle, not the same as DISABLED


class EngineState(Enum):
    """Enforcement loop states."""
    IDLE = "idle"
    POLLING = "polling"
    ENFORCING_ON = "enforcing_on"
    DISABLING = "disabling"


@dataclass(frozen=True)
class AppTarget:
    """A local application identified by process name, executable or desktop id."""
    process_identifier: str

    def describe(self) -> str:
        return f"app:{self.process_identifier}"


@dataclass(frozen=True)
class UrlTarget:
    """A web endpoint kept open in the kiosk browser."""
    uri: str

    def describe(self) -> str:
        return f"url:{self.uri}"


Target = Union[AppTarget, UrlTarget]

URL_PREFIXES = ("http://", "https://")


def parse_target(raw: Optional[str]) -> Optional[Target]:
    """
    Build a Target from a configured string.

    Strings starting with http:// or https:// are URL targets, anything else
    non-empty is an application identifier.
    """
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    if value.startswith(URL_PREFIXES):
        return UrlTarget(uri=value)
    return AppTarget(process_identifier=value)


def target_to_string(target: Target) -> str:
    """Inverse of parse_target(), used when caching a target locally."""
    if isinstance(target, UrlTarget):
        return target.uri
    if isinstance(target, AppTarget):
        return target.process_identifier
    raise TypeError(f"Unsupported target type: {type(target).__name__}")


@dataclass(frozen=True)
class RemoteConfig:
    """One successful poll of the backend."""
    flag: KioskFlag
    target: Optional[Target] = None


@dataclass
class EnforcementSession:
    """
    Per-run state of the enforcement loop.

    Lives only in memory and is rebuilt from scratch every time the loop
    starts.
    """
    last_flag: KioskFlag = KioskFlag.UNKNOWN
    consecutive_errors: int = 0
    consecutive_relaunch_failures: int = 0
    state: EngineState = EngineState.IDLE
    last_observation: KioskFlag = KioskFlag.UNKNOWN
    cycles: int = 0
