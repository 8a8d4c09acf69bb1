"""JSON payload codec for workflow and step inputs/outputs."""

from .deserializer import PayloadDeserializer
from .serializer import ANY_ADAPTER, PayloadSerializer

__all__ = ["ANY_ADAPTER", "PayloadDeserializer", "PayloadSerializer"]
