"""Goods Tracker Edge: offline queue and sync service for godown/shop dispatches."""

__version__ = "1.0.0"
