from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


def encode_json(value: Any) -> str:
    return json.dumps(value, cls=_Encoder, separators=(",", ":"))


def serialize_envelope(kind: str, data: dict[str, Any]) -> str:
    """Wrap a realtime frame: ``kind`` is ``presence`` or ``broadcast``."""
    return encode_json({"type": kind, "data": data})


def deserialize_envelope(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    envelope = json.loads(raw)
    return envelope["type"], envelope["data"]
