"""Small helpers shared by the test modules."""
import hashlib


def md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def split(data: bytes, size: int) -> list:
    return [data[i:i + size] for i in range(0, len(data), size)]
