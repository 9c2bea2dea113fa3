# ABOUTME: Result extraction for ArgoCD CLI output
# ABOUTME: Locates embedded JSON in noisy stdout and maps known status fields

"""
Best-effort parsing of `argocd app ... --output json` stdout.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

The CLI prints a JSON Application object, but the text that reaches us is
not always clean JSON: install steps, deprecation warnings, or a
"TIMESTAMP  GROUP  KIND ..." sync table can surround it. Extraction is
therefore two steps:

1. extract_json: cut from the first "{" to the last "}"
2. parse_outcome: decode that text and read the fields we care about

The first step is easy to fool (a stray brace in a banner widens the cut
and the decode then fails). That trade-off is accepted; a failed decode
only costs the structured fields, never the raw text.

=============================================================================
WHICH FIELDS?
=============================================================================

From the Application JSON:

    {
        "status": {
            "sync": {"status": "Synced", "revision": "abc123"},
            "health": {"status": "Healthy"},
            "resources": [{"kind": "Deployment", ...}, ...],
            "conditions": [{"type": "SyncError", ...}, ...]
        }
    }

Resources and conditions are passed through untouched.

=============================================================================
FAILURE POLICY
=============================================================================

parse_outcome raises on malformed input, it is a strict parser.
extract_outcome is what tasks call: it never raises, logs a warning, and
returns an outcome whose structured fields are all None while raw_output
still holds the full text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ParsedOutcome:
    """
    Structured view of one CLI invocation's output.

    Every structured field is optional; absence in the JSON is not an
    error. raw_output is always the full (trimmed) stdout text.

    parse_warning is None when parsing succeeded or there was nothing to
    parse, and holds the reason otherwise.
    """

    raw_output: str = ""
    sync_status: str | None = None
    health_status: str | None = None
    revision: str | None = None
    resources: list[dict[str, Any]] | None = None
    conditions: list[dict[str, Any]] | None = None
    parse_warning: str | None = None

    @property
    def parsed(self) -> bool:
        """True when no parse warning was recorded."""
        return self.parse_warning is None


def extract_json(raw_text: str | None) -> str | None:
    """
    Cut the JSON object out of surrounding noise.

    Examples:
        >>> extract_json('noise {"a":1} trailer')
        '{"a":1}'
        >>> extract_json("no braces here") is None
        True
    """
    if not raw_text:
        return None

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end > start:
        return raw_text[start : end + 1]
    return None


def _section(status: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = status.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise TypeError(f"status.{key} is {type(value).__name__}, expected object")
    return value


def _text(section: dict[str, Any] | None, key: str) -> str | None:
    if section is None:
        return None
    value = section.get(key)
    return None if value is None else str(value)


def _records(status: dict[str, Any], key: str) -> list[dict[str, Any]] | None:
    value = status.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise TypeError(f"status.{key} is {type(value).__name__}, expected array")
    return value


def parse_outcome(json_text: str, raw_output: str | None = None) -> ParsedOutcome:
    """
    Decode an Application JSON document into a ParsedOutcome.

    Args:
        json_text: Text holding exactly one JSON object.
        raw_output: Text to keep as raw_output, defaults to json_text.

    Returns:
        ParsedOutcome with every field found under "status".

    Raises:
        json.JSONDecodeError: If json_text is not valid JSON.
        ValueError: If the document is not a JSON object.
        TypeError: If status, sync, health, resources or conditions has
            the wrong shape.
    """
    document = json.loads(json_text)
    if not isinstance(document, dict):
        raise ValueError(f"expected a JSON object, got {type(document).__name__}")

    outcome = ParsedOutcome(raw_output=json_text if raw_output is None else raw_output)

    status = document.get("status")
    if status is None:
        return outcome
    if not isinstance(status, dict):
        raise TypeError(f"status is {type(status).__name__}, expected object")

    sync = _section(status, "sync")
    health = _section(status, "health")

    return replace(
        outcome,
        sync_status=_text(sync, "status"),
        revision=_text(sync, "revision"),
        health_status=_text(health, "status"),
        resources=_records(status, "resources"),
        conditions=_records(status, "conditions"),
    )


def extract_outcome(raw_text: str) -> ParsedOutcome:
    """
    Extract and parse without ever raising.

    Empty output yields an empty outcome without a warning: the CLI simply
    printed nothing. Anything else that cannot be parsed is logged as a
    warning and degrades to raw text only.
    """
    if not raw_text:
        return ParsedOutcome(raw_output=raw_text)

    json_text = extract_json(raw_text)
    if json_text is None:
        warning = "No JSON object found in ArgoCD output"
        logger.warning("Failed to parse ArgoCD output as JSON", reason=warning)
        return ParsedOutcome(raw_output=raw_text, parse_warning=warning)

    try:
        return parse_outcome(json_text, raw_output=raw_text)
    except (ValueError, TypeError) as e:
        logger.warning("Failed to parse ArgoCD output as JSON", reason=str(e))
        return ParsedOutcome(raw_output=raw_text, parse_warning=str(e))
