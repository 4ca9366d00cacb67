"""
Frame codec for the remote feed protocol.

Frames are UTF-8 JSON objects carrying at least a `type` string:

    -> {"type":"register","role":"client"}      once per connection
    <- {"type":"welcome","client_id":"<id>"}
    <- {"type":"ping"}
    -> {"type":"pong","client_id":"<id>"}
    <- {"type":"alert", ...} / {"type":"symbol_update", ...}   forwarded verbatim
"""

from __future__ import annotations

from typing import Any

import orjson

from feedrelay.relay.errors import FrameError
from feedrelay.relay.types import InboundMessage, MessageType


def decode_frame(data: bytes, max_frame_size: int) -> InboundMessage:
    """
    Parse one inbound frame.

    The size check happens before any parsing so oversized frames never reach
    the JSON decoder.

    Raises:
        FrameError: If the frame is oversized, not valid JSON, or not an object
    """
    size = len(data)
    if size >= max_frame_size:
        raise FrameError(
            "Oversized frame",
            frame_size=size,
            reason="oversized",
            component="protocol",
        )

    try:
        document = orjson.loads(data)
    except orjson.JSONDecodeError as e:
        raise FrameError(
            f"Malformed frame: {e}",
            frame_size=size,
            reason="malformed",
            component="protocol",
        ) from e

    if not isinstance(document, dict):
        raise FrameError(
            "Frame is not a JSON object",
            frame_size=size,
            reason="not_object",
            component="protocol",
        )

    return InboundMessage(
        message_type=MessageType.classify(document.get("type")),
        document=document,
    )


def encode_document(document: dict[str, Any]) -> bytes:
    """
    Re-encode a document for forwarding. Content and key order are kept.

    orjson decodes integers wider than 64 bits as floats, so such values are
    forwarded in float form rather than exactly.
    """
    return orjson.dumps(document)


def encode_register(role: str) -> bytes:
    return orjson.dumps({"type": MessageType.REGISTER.value, "role": role})


def encode_pong(client_id: str) -> bytes:
    """Build a pong frame. An empty client id is never answered."""
    if not client_id:
        raise ValueError("pong requires an assigned client_id")
    return orjson.dumps({"type": MessageType.PONG.value, "client_id": client_id})
