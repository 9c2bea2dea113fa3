# ABOUTME: Secret masking for ArgoCD task log output
# ABOUTME: Hides auth tokens in command strings, stderr lines, and structured data

"""
Secret masking.

=============================================================================
WHY MASK?
=============================================================================

Every domain command carries `--auth-token <token>` in clear text, and the
CLI sometimes echoes its own flags back on stderr. Anything that goes to a
log or the audit trail passes through these helpers first, so the token
never leaves the process in readable form.

Command strings handed to the runner are NOT masked; the CLI needs the real
token.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import MutableMapping

    import structlog

MASK = "***MASKED***"

# (pattern, replacement) pairs applied in order to free text
SECRET_PATTERNS = [
    # --auth-token value / --auth-token=value
    (re.compile(r"(--auth-token[=\s]+)\S+", re.I), rf"\1{MASK}"),
    # token: "value" or token = 'value'
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(password[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(secret[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    # Authorization: Bearer <token>
    (re.compile(r"(bearer\s+)[^\s\"']+", re.I), rf"\1{MASK}"),
]

# Keys whose values are replaced wholesale in dictionaries
SENSITIVE_KEYS = frozenset(
    [
        "token",
        "auth_token",
        "password",
        "secret",
        "api_key",
        "authorization",
        "server_cert",
    ]
)


def mask_text(text: str) -> str:
    """Apply SECRET_PATTERNS to a string."""
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def mask_secrets(data: Any) -> Any:
    """
    Recursively mask sensitive values.

    Strings go through mask_text, dictionary values under SENSITIVE_KEYS
    are replaced, lists are walked, everything else is returned as is.
    """
    if isinstance(data, str):
        return mask_text(data)
    if isinstance(data, dict):
        return {
            k: MASK if str(k).lower() in SENSITIVE_KEYS else mask_secrets(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [mask_secrets(item) for item in data]
    return data


def mask_event(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor masking every value of the event."""
    for key in list(event_dict):
        event_dict[key] = mask_secrets(event_dict[key]) if key not in SENSITIVE_KEYS else MASK
    return event_dict
