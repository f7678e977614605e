"""
Security utilities: API key auth, rate limiting, model-output sanitisation.

The approval links in emails are deliberately unauthenticated: the request
id plus the one-shot pending_approval precondition is what protects them.
"""

from __future__ import annotations

import re
import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.util import get_remote_address

from contentforge.core.config import Settings, get_settings

# ── Rate limiter (attached to FastAPI app in main.py) ───────
limiter = Limiter(key_func=get_remote_address)

# ── API Key authentication ──────────────────────────────────
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    api_key: Annotated[str | None, Security(_api_key_header)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    if not api_key or not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing API key",
        )
    return api_key


# ── Model output sanitisation (OWASP LLM02) ─────────────────
_ROLE_MARKERS = (
    "SYSTEM:", "ASSISTANT:", "USER:", "```system",
    "<|im_start|>", "<|im_end|>", "<<SYS>>", "<</SYS>>",
)
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def sanitize_generated_text(text: str) -> str:
    """Redact chat-role markers and collapse runs of blank lines in generated copy."""
    sanitized = text.strip()
    for marker in _ROLE_MARKERS:
        sanitized = sanitized.replace(marker, "[REDACTED]")
    return _EXCESS_BLANK_LINES.sub("\n\n", sanitized)
