import hashlib


def md5_bytes(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def content_digest(data: bytes, algorithm: str = "sha256") -> str:
    """Hex digest of an in-memory buffer, fed in 8 KiB chunks."""
    h = hashlib.new(algorithm)
    view = memoryview(data)
    for start in range(0, len(view), 8192):
        h.update(view[start:start + 8192])
    return h.hexdigest()


def short_digest(data: bytes, length: int = 16, algorithm: str = "sha256") -> str:
    """Truncated, upper-cased hex digest used as a compact identifier."""
    if length <= 0:
        raise ValueError("length must be positive")
    return content_digest(data, algorithm)[:length].upper()
