"""
LTI tool configuration loader.

Platform registrations come from JSON (inline or a file) in PyLTI1p3's
``ToolConfDict`` format; RSA keys come from inline PEM strings (container
secrets) or file paths (local dev).  Relative paths resolve against the
working directory.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pylti1p3.tool_config import ToolConfDict

from passback.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _load_key(value: str) -> str:
    """PEM string as-is, otherwise the contents of the file it names."""
    if value.startswith("-----BEGIN"):
        return value
    return Path(value).expanduser().read_text()


def _load_platform_config(value: str) -> dict:
    """Platform registrations from a JSON string or file path."""
    stripped = value.strip()
    if stripped.startswith("{"):
        return json.loads(stripped)
    return json.loads(Path(value).expanduser().read_text())


def get_tool_config(settings: Optional[Settings] = None) -> ToolConfDict:
    """Build the PyLTI1p3 tool config with keys registered per issuer/client."""
    settings = settings or get_settings()

    platforms = _load_platform_config(settings.lti_platform_config)
    tool_conf = ToolConfDict(platforms)

    try:
        private_key = _load_key(settings.lti_private_key)
        public_key = _load_key(settings.lti_public_key)
    except FileNotFoundError:
        logger.warning(
            "LTI RSA keys not found. Generate with: "
            "openssl genrsa -out configs/lti/private.key 2048 && "
            "openssl rsa -in configs/lti/private.key -pubout -out configs/lti/public.key"
        )
        raise

    for issuer, registrations in platforms.items():
        # ToolConfDict accepts a single registration dict or a list of them.
        if isinstance(registrations, dict):
            registrations = [registrations]
        for registration in registrations:
            client_id = registration.get("client_id")
            tool_conf.set_private_key(issuer, private_key, client_id=client_id)
            tool_conf.set_public_key(issuer, public_key, client_id=client_id)

    return tool_conf
