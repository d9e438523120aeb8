"""
Job payload codec.

Payloads are opaque to the store. They are serialized to JSON text for the
``data`` column and parsed back on read.
"""

from typing import Any

from pydantic import TypeAdapter

_adapter: TypeAdapter[Any] = TypeAdapter(Any)


class Serializer:
    """Pack arbitrary values into storable text and back."""

    @staticmethod
    def pack(value: Any) -> str | None:
        if value is None:
            return None
        return _adapter.dump_json(value).decode("utf-8")

    @staticmethod
    def unpack(blob: str | bytes | None) -> Any:
        if blob is None or blob == "":
            return None
        return _adapter.validate_json(blob)
