"""
HE provider capability interface and the ciphertext wrapper used by the
packing/evaluation core.

The core never touches key material or ring arithmetic itself. It talks to
an ``HEProvider`` that supplies encoding, encryption, decryption, addition,
plaintext multiplication, modulus switching and a well-formedness check.
``cryptgmm.simulation.SimulatedProvider`` implements it on plaintext
integers; a binding to a real HE library implements the same methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import torch

from .batching.partition import TileId
from .config import SchemeParams

__all__ = ["HEProvider", "EncryptedTile"]


class HEProvider(ABC):
    """Operations the protocol needs from an HE scheme.

    Ciphertexts and plaintexts are opaque to the caller. Implementations
    must treat their inputs as read-only and return fresh values; the
    ownership rules are enforced one level up by ``EncryptedTile``.
    """

    def __init__(self, params: SchemeParams):
        self.params = params

    @property
    def slots(self) -> int:
        return self.params.slots

    @property
    def degree(self) -> int:
        return self.params.degree

    @abstractmethod
    def keygen(self) -> None:
        """Generate (or regenerate) the session's key material."""

    @abstractmethod
    def encode_slots(self, values: torch.Tensor) -> Any:
        """Encode an ``(l, d)`` slot matrix into a plaintext ring element."""

    @abstractmethod
    def encrypt(self, plaintext: Any) -> Any:
        """Encrypt a plaintext under the session key."""

    @abstractmethod
    def decrypt(self, cipher: Any) -> torch.Tensor:
        """Decrypt to an ``(l, d)`` slot matrix."""

    @abstractmethod
    def add(self, left: Any, right: Any) -> Any:
        """Homomorphic addition."""

    @abstractmethod
    def multiply_plain(self, cipher: Any, plaintext: Any) -> Any:
        """Slot-wise ring product of a ciphertext and a plaintext."""

    @abstractmethod
    def mod_switch_down(self, cipher: Any, level: int) -> Any:
        """Switch a ciphertext down to ``level``."""

    @abstractmethod
    def level(self, cipher: Any) -> int:
        """Current level of a ciphertext."""

    @abstractmethod
    def is_well_formed(self, cipher: Any) -> bool:
        """Whether the ciphertext's noise budget still allows correct decryption."""

    def describe(self) -> str:
        return f"{type(self).__name__}({self.params})"


class EncryptedTile:
    """A ciphertext tagged with the tile it represents.

    The wrapper is logically immutable. ``multiply_plain`` borrows the
    ciphertext and returns a new tile; ``combine``, ``mod_down`` and
    ``decrypt`` consume their operands, so a tile that has been folded into
    an accumulator can no longer be used as if it were still authoritative.

    Example:
        >>> a = EncryptedTile.encrypt(provider, slots_a, TileId(0, 0))
        >>> prod = a.multiply_plain(plain_b)      # a is still usable
        >>> acc = prod.combine(a.multiply_plain(plain_c))  # prod is consumed
        >>> out = acc.mod_down(1)
    """

    def __init__(self, cipher: Any, tile: TileId, provider: HEProvider):
        self._cipher = cipher
        self._tile = TileId(*tile)
        self._provider = provider
        self._consumed = False

    @classmethod
    def encrypt(cls, provider: HEProvider, slots: torch.Tensor, tile: TileId) -> "EncryptedTile":
        return cls(provider.encrypt(provider.encode_slots(slots)), tile, provider)

    @property
    def tile(self) -> TileId:
        return self._tile

    @property
    def provider(self) -> HEProvider:
        return self._provider

    @property
    def consumed(self) -> bool:
        return self._consumed

    @property
    def level(self) -> int:
        return self._provider.level(self._borrow())

    def _borrow(self) -> Any:
        if self._consumed:
            raise RuntimeError(f"Ciphertext for tile {tuple(self._tile)} was already consumed")
        return self._cipher

    def _take(self) -> Any:
        cipher = self._borrow()
        self._consumed = True
        self._cipher = None
        return cipher

    def retag(self, tile: TileId) -> "EncryptedTile":
        """Move the ciphertext under a new tile id (consumes ``self``)."""
        return EncryptedTile(self._take(), tile, self._provider)

    def multiply_plain(self, plaintext: Any, tile: Optional[TileId] = None) -> "EncryptedTile":
        cipher = self._provider.multiply_plain(self._borrow(), plaintext)
        return EncryptedTile(cipher, tile or self._tile, self._provider)

    def combine(self, other: "EncryptedTile") -> "EncryptedTile":
        """Homomorphic sum; both ``self`` and ``other`` are consumed."""
        if other is self:
            raise ValueError("Cannot combine a ciphertext with itself")
        if other._provider is not self._provider:
            raise ValueError("Cannot combine ciphertexts from different providers")
        left = self._borrow()
        right = other._borrow()
        cipher = self._provider.add(left, right)
        self._take()
        other._take()
        return EncryptedTile(cipher, self._tile, self._provider)

    def mod_down(self, level: int) -> "EncryptedTile":
        """Switch down to ``level`` (consumes ``self``)."""
        cipher = self._provider.mod_switch_down(self._borrow(), level)
        self._take()
        return EncryptedTile(cipher, self._tile, self._provider)

    def is_well_formed(self) -> bool:
        return self._provider.is_well_formed(self._borrow())

    def decrypt(self) -> torch.Tensor:
        """Decrypt to an ``(l, d)`` slot matrix (consumes ``self``)."""
        return self._provider.decrypt(self._take())

    def __repr__(self) -> str:
        if self._consumed:
            return f"EncryptedTile(tile={tuple(self._tile)}, consumed)"
        return f"EncryptedTile(tile={tuple(self._tile)}, level={self.level})"
