"""
kioskwatch - Kiosk enforcement agent for Linux edge devices.

Keeps a remotely configured application or web page in the foreground
while the device-management backend has kiosk mode switched on.
"""

__version__ = "1.0.0"
