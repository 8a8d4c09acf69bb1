from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from ..errors import PayloadSerializationError

ANY_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)


class PayloadSerializer:
    """
    Serialize a workflow or step payload into JSON text for storage.

    The value is validated against ``adapter`` first, so a declared shape is
    enforced before anything is written.
    """

    @staticmethod
    def serialize(value: Any, adapter: Optional[TypeAdapter] = None) -> str:
        adapter = adapter or ANY_ADAPTER
        try:
            if adapter is not ANY_ADAPTER:
                value = adapter.validate_python(value)
            return adapter.dump_json(value).decode("utf-8")
        except ValidationError as e:
            raise PayloadSerializationError(
                f"Payload does not match the declared shape: {e}"
            ) from e
        except (PydanticSerializationError, TypeError, ValueError) as e:
            raise PayloadSerializationError(
                f"Cannot serialize payload of type '{type(value).__name__}': {e}"
            ) from e
