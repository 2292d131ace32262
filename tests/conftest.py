import pytest
import sys
from pathlib import Path

import torch

sys.path.insert(0, str(Path(__file__).parent))

from mocks.mock_backend import MockProvider

from cryptgmm import Matrix, SchemeParams, SimulatedProvider


@pytest.fixture
def small_params():
    """l=4 slots of degree 2 over Z_7, enough levels for an inner dimension of 4."""
    return SchemeParams(slots=4, degree=2, modulus=7, level_budget=3)


@pytest.fixture
def wide_params():
    """A larger modulus so that random ciphertexts never collide with messages."""
    return SchemeParams(slots=4, degree=3, modulus=70913, level_budget=6)


@pytest.fixture
def generator():
    return torch.Generator().manual_seed(123)


@pytest.fixture
def provider(small_params):
    return SimulatedProvider(small_params, seed=7)


@pytest.fixture
def mock_provider(small_params):
    return MockProvider(small_params)


@pytest.fixture
def concrete_a():
    """The 4x4 client matrix of the reference scenario over Z_7."""
    return Matrix([[1, 2, 3, 4], [5, 6, 0, 1], [2, 3, 4, 5], [6, 0, 1, 2]], modulus=7)


@pytest.fixture
def random_moduli_params():
    """Four slots of degree 4 over Z_70913 with random monic slot moduli."""
    gen = torch.Generator().manual_seed(0)
    values = torch.randint(0, 70913, (4, 4), generator=gen)
    moduli = tuple(tuple(int(v) for v in row) for row in values)
    return SchemeParams(slots=4, degree=4, modulus=70913, level_budget=4, slot_moduli=moduli)
