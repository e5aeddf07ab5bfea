"""Model provider subsystem for genloop.

Re-exports the provider ABCs and the deterministic mock used in tests::

    from genloop.provider import ModelProvider, MockModelProvider
"""

from genloop.provider.base import DecodeContext, ModelProvider
from genloop.provider.mock import MockDecodeContext, MockModelProvider

__all__ = [
    "DecodeContext",
    "MockDecodeContext",
    "MockModelProvider",
    "ModelProvider",
]
