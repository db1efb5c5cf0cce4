"""
Short prefixed ID generator for client-side bookkeeping.

Format: {prefix}_{base36_random}
- op_xxxxxxxx  - optimistic change
- sb_xxxxxxxx  - view subscription

Server entities keep their Mongo ObjectIds; these IDs never leave the client.
"""
import secrets

# Base36 alphabet (lowercase letters + digits)
ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
BASE = len(ALPHABET)  # 36

PREFIXES = {
    'change': 'op',
    'subscription': 'sb',
}


def _random_base36(length: int = 8) -> str:
    """Generate random base36 string"""
    return ''.join(ALPHABET[secrets.randbelow(BASE)] for _ in range(length))


def generate_id(kind: str) -> str:
    """
    Generate a new short ID for the given kind.

    Raises:
        ValueError: if kind is not one of PREFIXES
    """
    prefix = PREFIXES.get(kind)
    if prefix is None:
        raise ValueError(f"Unknown id kind: {kind}. Valid kinds: {list(PREFIXES.keys())}")
    return f"{prefix}_{_random_base36()}"


def generate_change_id() -> str:
    return generate_id('change')


def generate_subscription_id() -> str:
    return generate_id('subscription')
