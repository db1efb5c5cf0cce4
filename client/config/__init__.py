"""
Configuration module for REST, WebSocket and cache tunables.
"""
from .settings import Settings, get_settings

__all__ = [
    'Settings',
    'get_settings',
]
