from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from ..errors import PayloadSerializationError
from .serializer import ANY_ADAPTER


class PayloadDeserializer:
    """
    Reconstruct a payload from stored JSON text.

    Supports:
    - Plain JSON values (no declared shape)
    - Any type pydantic can validate (models, dataclasses, typed containers)
    """

    @staticmethod
    def deserialize(data: Optional[str], adapter: Optional[TypeAdapter] = None) -> Any:
        adapter = adapter or ANY_ADAPTER
        if data is None or data == "":
            data = "null"
        try:
            return adapter.validate_json(data)
        except ValidationError as e:
            raise PayloadSerializationError(
                f"Stored payload does not match the declared shape: {e}"
            ) from e
