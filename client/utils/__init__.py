"""
Utility functions
"""
from .datetime_utils import parse_api_datetime, to_api_datetime, utcnow
from .id_generator import generate_change_id, generate_subscription_id

__all__ = [
    'parse_api_datetime',
    'to_api_datetime',
    'utcnow',
    'generate_change_id',
    'generate_subscription_id',
]
