"""
Status Panel Module

Local read-only page showing the kiosk agent's state.
"""

from .app import app, start_status_panel

__all__ = ['app', 'start_status_panel']
