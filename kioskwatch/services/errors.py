"""Error taxonomy for the kiosk enforcement services."""


class KioskError(Exception):
    """Base class for all agent errors."""


class ConfigFetchError(KioskError):
    """Backend or network failure while polling the remote configuration."""


class LaunchFailure(KioskError):
    """The target could not be brought to the foreground."""


class ResolutionFailure(KioskError):
    """No target is configured locally or remotely."""


class OverlayStartFailure(KioskError):
    """The gesture overlay could not be started. Never fatal."""
