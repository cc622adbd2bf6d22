import time
from typing import Optional

ID_PREFIX = "PROD-"
PAYLOAD_SEPARATOR = "|"


def generate_product_id(last_token: Optional[int] = None) -> str:
    """
    Returns a PROD-<epoch ms> identifier.
    If last_token is given, the token is bumped past it so ids from one
    issuer are strictly increasing even within the same millisecond.
    """
    token = int(time.time() * 1000)
    if last_token is not None and token <= last_token:
        token = last_token + 1
    return f"{ID_PREFIX}{token}"


def id_token(product_id: str) -> Optional[int]:
    """Numeric token of a PROD-<n> id, or None for foreign ids."""
    if not product_id.startswith(ID_PREFIX):
        return None
    try:
        return int(product_id[len(ID_PREFIX):])
    except ValueError:
        return None


def build_payload(product_id: str, name: str) -> str:
    return f"{product_id}{PAYLOAD_SEPARATOR}{name}"


def parse_identifier(text: str) -> str:
    """Leading token of a scanned payload. Anything after the first separator is metadata."""
    return text.split(PAYLOAD_SEPARATOR, 1)[0].strip()
