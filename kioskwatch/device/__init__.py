"""
Device module: what the agent can observe and do on the local desktop.
"""

from .connectivity import ConnectivityGate
from .foreground_probe import ForegroundProbe
from .launcher import TargetLauncher
from .overlay import KioskOverlay

__all__ = ['ConnectivityGate', 'ForegroundProbe', 'TargetLauncher', 'KioskOverlay']
