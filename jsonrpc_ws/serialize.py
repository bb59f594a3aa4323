"""
Serialization and deserialization for jsonrpc_ws.

JSON-RPC messages travel as JSON text over both transports. Decoding failures
are reported as ParseError so callers can tell "not JSON" apart from other
errors.
"""

import json
from typing import Any, Union


class ParseError(ValueError):
    """Raised when inbound text is not valid JSON."""

    def __init__(self, text: Any, reason: str):
        super().__init__(f"Cannot parse message as JSON: {reason}")
        self.text = text


def serialize(value: Any) -> str:
    """Serialize a request, notification or batch to JSON text."""
    return json.dumps(value, separators=(",", ":"))


def deserialize(text: Union[str, bytes, bytearray]) -> Any:
    """
    Deserialize JSON text.

    Raises:
        ParseError: if text is not a string or not valid JSON
    """
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(text, str(e)) from e

    if not isinstance(text, str):
        raise ParseError(text, f"unsupported type {type(text).__name__}")

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(text, str(e)) from e
