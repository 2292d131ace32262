"""Mock HE provider for testing without key material."""

from .mock_backend import (
    MockCiphertext,
    MockPlaintext,
    MockProvider,
)

__all__ = [
    "MockCiphertext",
    "MockPlaintext",
    "MockProvider",
]
