"""Tests for the simulated HE provider and the EncryptedTile wrapper."""

import pytest
import torch

from cryptgmm import EncryptedTile, SimulatedProvider
from cryptgmm.batching import TileId
from cryptgmm.ring import reduction_table, ring_multiply


def random_slots(params, generator):
    return torch.randint(0, params.modulus, (params.slots, params.degree), generator=generator)


class TestSimulatedProvider:

    def test_encrypt_decrypt(self, wide_params, generator):
        provider = SimulatedProvider(wide_params, seed=1)
        m = random_slots(wide_params, generator)

        ct = provider.encrypt(provider.encode_slots(m))

        assert not torch.equal(ct.c0, m)
        assert torch.equal(provider.decrypt(ct), m)
        assert provider.level(ct) == wide_params.level_budget
        assert provider.noise(ct) == 0

    def test_encode_shape(self, provider):
        with pytest.raises(ValueError):
            provider.encode_slots(torch.zeros(3, 2, dtype=torch.int64))

    def test_add(self, wide_params, generator):
        provider = SimulatedProvider(wide_params, seed=1)
        a = random_slots(wide_params, generator)
        b = random_slots(wide_params, generator)

        ct = provider.add(
            provider.encrypt(provider.encode_slots(a)),
            provider.encrypt(provider.encode_slots(b)),
        )

        assert torch.equal(provider.decrypt(ct), (a + b) % wide_params.modulus)

    def test_multiply_plain_is_the_ring_product(self, wide_params, generator):
        provider = SimulatedProvider(wide_params, seed=1)
        p = wide_params.modulus
        a = random_slots(wide_params, generator)
        b = random_slots(wide_params, generator)

        ct = provider.multiply_plain(
            provider.encrypt(provider.encode_slots(a)), provider.encode_slots(b)
        )
        expected = ring_multiply(a, b, reduction_table(wide_params.moduli_tensor(), p), p)

        assert torch.equal(provider.decrypt(ct), expected)
        assert provider.noise(ct) == 1

    def test_noise_accounting(self, provider, small_params):
        zero = provider.encode_slots(torch.zeros(4, 2, dtype=torch.int64))
        ct = provider.encrypt(zero)

        left = provider.multiply_plain(ct, zero)
        right = provider.multiply_plain(ct, zero)
        summed = provider.add(left, right)
        switched = provider.mod_switch_down(summed, 1)

        assert provider.noise(summed) == 2
        assert provider.noise(switched) == 3
        assert provider.level(switched) == 1
        assert provider.is_well_formed(switched)

    def test_exhausted_budget_corrupts(self, provider):
        m = torch.ones(4, 2, dtype=torch.int64)
        ct = provider.encrypt(provider.encode_slots(m))
        for _ in range(4):
            ct = provider.mod_switch_down(ct, 1)

        assert not provider.is_well_formed(ct)
        assert not torch.equal(provider.decrypt(ct), m)

    def test_mod_switch_up_rejected(self, provider):
        ct = provider.encrypt(provider.encode_slots(torch.zeros(4, 2, dtype=torch.int64)))
        low = provider.mod_switch_down(ct, 1)

        with pytest.raises(ValueError):
            provider.mod_switch_down(low, 2)
        with pytest.raises(ValueError):
            provider.mod_switch_down(ct, -1)

    def test_seeded_key_is_reproducible(self, small_params):
        m = torch.arange(8).reshape(4, 2)
        first = SimulatedProvider(small_params, seed=3)
        second = SimulatedProvider(small_params, seed=3)

        ct1 = first.encrypt(first.encode_slots(m))
        ct2 = second.encrypt(second.encode_slots(m))

        assert torch.equal(ct1.c0, ct2.c0)
        assert torch.equal(second.decrypt(ct1), m % 7)


class TestEncryptedTile:

    def _tile(self, provider, value=1):
        slots = torch.full((4, 2), value, dtype=torch.int64)
        return EncryptedTile.encrypt(provider, slots, TileId(0, 0))

    def test_multiply_plain_borrows(self, provider):
        tile = self._tile(provider)
        plain = provider.encode_slots(torch.ones(4, 2, dtype=torch.int64))

        product = tile.multiply_plain(plain, tile=TileId(0, 3))

        assert not tile.consumed
        assert product.tile == TileId(0, 3)
        tile.multiply_plain(plain)

    def test_combine_consumes_both(self, provider):
        left = self._tile(provider, 2)
        right = self._tile(provider, 3)

        total = left.combine(right)

        assert left.consumed and right.consumed
        assert total.decrypt().tolist() == [[5, 5]] * 4
        with pytest.raises(RuntimeError):
            left.level
        with pytest.raises(RuntimeError):
            right.decrypt()

    def test_combine_rejects_self_and_foreign(self, provider, small_params):
        tile = self._tile(provider)
        other = self._tile(SimulatedProvider(small_params, seed=1))

        with pytest.raises(ValueError):
            tile.combine(tile)
        with pytest.raises(ValueError):
            tile.combine(other)
        assert not tile.consumed

    def test_mod_down_consumes(self, provider):
        tile = self._tile(provider)

        lowered = tile.mod_down(1)

        assert tile.consumed
        assert lowered.level == 1
        assert lowered.is_well_formed()

    def test_decrypt_consumes(self, provider):
        tile = self._tile(provider, 4)

        assert tile.decrypt().tolist() == [[4, 4]] * 4
        assert tile.consumed
        assert "consumed" in repr(tile)
        with pytest.raises(RuntimeError):
            tile.decrypt()

    def test_retag(self, provider):
        tile = self._tile(provider)

        moved = tile.retag(TileId(2, 5))

        assert moved.tile == (2, 5)
        assert tile.consumed
