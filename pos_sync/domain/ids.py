from __future__ import annotations

import secrets

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
SUFFIX_LENGTH = 7


def generate_id(now_ms: int, *, suffix: str | None = None) -> str:
    """Time-ordered id with a random base36 suffix: ``{epoch_ms}-{suffix}``."""
    if suffix is None:
        suffix = "".join(secrets.choice(_BASE36) for _ in range(SUFFIX_LENGTH))
    return f"{now_ms}-{suffix}"


def product_sale_log_id(sale_id: str, product_id: str) -> str:
    return f"{sale_id}-{product_id}"
