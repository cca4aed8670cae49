# services/payments/config.py
import os
from flask import current_app, has_app_context


def cfg(key: str, default=None):
    """Flask config first (create_app already folded the env in), env second."""
    if has_app_context() and key in current_app.config:
        return current_app.config[key]
    v = os.environ.get(key)
    return v if v is not None else default


def cfg_bool(key: str, default: bool = False) -> bool:
    v = cfg(key)
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ("1", "true", "yes", "on")
