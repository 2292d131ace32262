"""
Plaintext simulation of a levelled, slot-batched HE scheme.

``SimulatedProvider`` runs the same algebra a BFV-style scheme runs on its
plaintext slots, without the lattice noise: a ciphertext is a pair
``(c0, c1)`` of slot matrices with ``c0 + c1 * s == m`` slot-wise, where
``s`` is the secret key and ``c1`` is fresh randomness. The server-side
operations (addition, plaintext multiplication, modulus switching) act on
the pair exactly as in the real scheme, so the evaluation core never sees
a message in the clear.

Noise is tracked as an integer budget instead of being sampled:

- a fresh ciphertext sits at level ``L`` with noise 0;
- ``multiply_plain`` adds one unit;
- ``add`` sums the noise of both operands;
- ``mod_switch_down`` adds one unit and lowers the level.

A ciphertext is well formed while its noise does not exceed ``L``.
Decrypting an ill-formed ciphertext returns corrupted slots, which is what
a real scheme does once the budget is exhausted.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

import torch

from .config import SchemeParams
from .provider import HEProvider
from .ring import reduction_table, ring_multiply

__all__ = ["SimulatedCiphertext", "SimulatedPlaintext", "SimulatedProvider"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulatedPlaintext:
    slots: torch.Tensor


@dataclass(frozen=True)
class SimulatedCiphertext:
    c0: torch.Tensor
    c1: torch.Tensor
    level: int
    noise: int


class SimulatedProvider(HEProvider):
    """HE provider that evaluates on plaintext integers.

    Example:
        >>> provider = SimulatedProvider(SchemeParams(slots=4, degree=2, modulus=7))
        >>> ct = provider.encrypt(provider.encode_slots(torch.ones(4, 2, dtype=torch.int64)))
        >>> provider.decrypt(ct).tolist()
        [[1, 1], [1, 1], [1, 1], [1, 1]]
    """

    def __init__(self, params: SchemeParams, seed: Optional[int] = 0):
        super().__init__(params)
        self._generator = torch.Generator()
        if seed is None:
            self._generator.seed()
        else:
            self._generator.manual_seed(seed)
        self._rng_lock = threading.Lock()
        self._reduction = reduction_table(params.moduli_tensor(), params.modulus)
        self._secret: Optional[torch.Tensor] = None
        self.keygen()

    @property
    def modulus(self) -> int:
        return self.params.modulus

    def _random_slots(self) -> torch.Tensor:
        with self._rng_lock:
            return torch.randint(
                0,
                self.modulus,
                (self.slots, self.degree),
                generator=self._generator,
                dtype=torch.int64,
            )

    def _mul(self, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        return ring_multiply(a, b, self._reduction, self.modulus)

    def keygen(self) -> None:
        self._secret = self._random_slots()
        logger.debug("Generated secret key for %s", self.params)

    def encode_slots(self, values: torch.Tensor) -> SimulatedPlaintext:
        values = torch.as_tensor(values, dtype=torch.int64)
        expected = (self.slots, self.degree)
        if tuple(values.shape) != expected:
            raise ValueError(
                f"Slot matrix has shape {tuple(values.shape)}, expected {expected}"
            )
        return SimulatedPlaintext(values % self.modulus)

    def encrypt(self, plaintext: SimulatedPlaintext) -> SimulatedCiphertext:
        c1 = self._random_slots()
        c0 = (plaintext.slots - self._mul(c1, self._secret)) % self.modulus
        return SimulatedCiphertext(c0=c0, c1=c1, level=self.params.level_budget, noise=0)

    def decrypt(self, cipher: SimulatedCiphertext) -> torch.Tensor:
        slots = (cipher.c0 + self._mul(cipher.c1, self._secret)) % self.modulus
        if not self.is_well_formed(cipher):
            logger.debug(
                "Decrypting exhausted ciphertext (noise=%d, budget=%d)",
                cipher.noise,
                self.params.level_budget,
            )
            slots = (slots + 1) % self.modulus
        return slots

    def add(self, left: SimulatedCiphertext, right: SimulatedCiphertext) -> SimulatedCiphertext:
        return SimulatedCiphertext(
            c0=(left.c0 + right.c0) % self.modulus,
            c1=(left.c1 + right.c1) % self.modulus,
            level=min(left.level, right.level),
            noise=left.noise + right.noise,
        )

    def multiply_plain(
        self, cipher: SimulatedCiphertext, plaintext: SimulatedPlaintext
    ) -> SimulatedCiphertext:
        return SimulatedCiphertext(
            c0=self._mul(cipher.c0, plaintext.slots),
            c1=self._mul(cipher.c1, plaintext.slots),
            level=cipher.level,
            noise=cipher.noise + 1,
        )

    def mod_switch_down(self, cipher: SimulatedCiphertext, level: int) -> SimulatedCiphertext:
        if level < 0 or level > cipher.level:
            raise ValueError(
                f"Cannot switch a level-{cipher.level} ciphertext down to level {level}"
            )
        return SimulatedCiphertext(c0=cipher.c0, c1=cipher.c1, level=level, noise=cipher.noise + 1)

    def level(self, cipher: SimulatedCiphertext) -> int:
        return cipher.level

    def noise(self, cipher: SimulatedCiphertext) -> int:
        return cipher.noise

    def is_well_formed(self, cipher: SimulatedCiphertext) -> bool:
        return cipher.level >= 0 and cipher.noise <= self.params.level_budget
