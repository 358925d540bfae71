"""Token-response parsing and declarative profile field mapping.

Token endpoints answer either with JSON or with a classic form-encoded
body, so extraction supports both. Profile documents are parsed once and
read through JSON-pointer field mappings.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from fedbroker.broker.errors import ExtractionError, ProtocolError


def extract_token(response: str | None, token_name: str) -> str | None:
    """Extract a named token from a token-endpoint response body.

    Args:
        response: Raw response body (JSON or form-encoded).
        token_name: Name of the field to extract (e.g. "access_token").

    Returns:
        The token value, or None if absent or blank.

    Raises:
        ExtractionError: If the body looks like JSON but cannot be parsed.
    """
    if response is None:
        return None

    if response.startswith("{"):
        try:
            node = json.loads(response)
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Could not extract token [{token_name}] from response due: {e}") from e

        value = node.get(token_name) if isinstance(node, dict) else None
        if not isinstance(value, str) or not value.strip():
            return None
        return value

    match = re.search(re.escape(token_name) + r"=([^&]+)", response)
    if match:
        return match.group(1)
    return None


def get_json_property(node: dict[str, Any] | None, name: str) -> str | None:
    """Get a JSON property as text.

    Numbers and booleans are converted to text, empty strings to None.
    """
    if not node or name not in node:
        return None
    return _as_text(node[name])


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, dict | list):
        return None
    if isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    return text or None


def parse_json_document(body: str) -> dict[str, Any]:
    """Parse a profile response body into a JSON object.

    Raises:
        ProtocolError: If the body is not a JSON object.
    """
    try:
        document = json.loads(body)
    except (json.JSONDecodeError, TypeError) as e:
        raise ProtocolError(f"Profile response is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ProtocolError("Profile response is not a JSON object")
    return document


def resolve_pointer(document: Any, pointer: str) -> Any:
    """Resolve an RFC 6901 JSON pointer, returning None when a step is missing."""
    if pointer == "":
        return document

    current = document
    for raw in pointer[1:].split("/"):
        token = raw.replace("~1", "/").replace("~0", "~")
        if isinstance(current, dict):
            if token not in current:
                return None
            current = current[token]
        elif isinstance(current, list) and token.isdigit() and int(token) < len(current):
            current = current[int(token)]
        else:
            return None
    return current


@dataclass(frozen=True)
class ProfileField:
    """One identity attribute read from a profile document."""

    name: str
    path: str
    required: bool = False


@dataclass
class MappedProfile:
    """Values read from a profile document by a ProfileMapping."""

    values: dict[str, str | None] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    document: dict[str, Any] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        """Whether every required field was found."""
        return not self.missing

    def get(self, name: str) -> str | None:
        return self.values.get(name)


@dataclass(frozen=True)
class ProfileMapping:
    """Declarative field name -> JSON pointer table."""

    fields: tuple[ProfileField, ...]

    def with_required(self, names: set[str]) -> ProfileMapping:
        """Return a copy where the named fields are required."""
        return ProfileMapping(
            tuple(
                ProfileField(f.name, f.path, f.required or f.name in names)
                for f in self.fields
            )
        )

    def apply(self, document: dict[str, Any]) -> MappedProfile:
        """Read every mapped field from an already-parsed document."""
        mapped = MappedProfile(document=document)
        for profile_field in self.fields:
            value = _as_text(resolve_pointer(document, profile_field.path))
            mapped.values[profile_field.name] = value
            if value is None and profile_field.required:
                mapped.missing.append(profile_field.name)
        return mapped
