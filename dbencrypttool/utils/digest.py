import hashlib


def sha1_hex(data: bytes) -> str:
    """Uppercase hex SHA-1 of ``data`` (40 chars, no separators)."""
    return hashlib.sha1(data).hexdigest().upper()
