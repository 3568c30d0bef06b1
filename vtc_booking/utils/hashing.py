import hashlib


def message_fingerprint(message: str) -> str:
    """Short stable id for a user message, safe to put in logs."""
    return hashlib.sha256((message or "").encode()).hexdigest()[:12]


def client_key(ip: str) -> str:
    return hashlib.sha256((ip or "unknown").encode()).hexdigest()
