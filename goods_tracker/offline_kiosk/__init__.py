"""
Offline Kiosk Module

Provides the local HTTP API the shop UI uses while offline.
"""

from .app import create_app, start_offline_kiosk

__all__ = ['create_app', 'start_offline_kiosk']
