# feedpilot/ipc/protocol.py
"""
Wire format: one JSON object per line, both directions.

  request   {"id": <str|int>, "method": "feed.list", "params": {...}}
  success   {"id": <same id>, "result": ...}
  failure   {"id": <same id or null>, "error": {"message": "...", "code": -32601}}

Codes follow JSON-RPC 2.0.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

MAX_LINE_BYTES = 1024 * 1024

RequestId = Optional[Union[int, str]]


class Request(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: RequestId = None
    method: str = Field(min_length=1)
    params: Optional[Dict[str, Any]] = None


class ProtocolError(Exception):
    """A line that could not be turned into a Request."""

    def __init__(self, code: int, message: str, request_id: RequestId = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.request_id = request_id


def parse_request(line: Union[bytes, str]) -> Request:
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(PARSE_ERROR, f"Parse error: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(INVALID_REQUEST, "Invalid request: expected a JSON object")

    raw_id = data.get("id")
    request_id = raw_id if isinstance(raw_id, (int, str)) and not isinstance(raw_id, bool) else None
    try:
        return Request.model_validate(data)
    except ValidationError as e:
        detail = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ProtocolError(INVALID_REQUEST, f"Invalid request: {detail}", request_id) from e


def success(request_id: RequestId, result: Any) -> Dict[str, Any]:
    return {"id": request_id, "result": result}


def failure(request_id: RequestId, code: int, message: str) -> Dict[str, Any]:
    return {"id": request_id, "error": {"message": message, "code": code}}


def encode(message: Dict[str, Any]) -> bytes:
    return (json.dumps(message, default=str, separators=(",", ":")) + "\n").encode("utf-8")
