import numpy as np
import pytest

from fde_generator import FixedDimensionalEncodingConfig


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def small_config():
    return FixedDimensionalEncodingConfig(
        dimension=8, num_repetitions=3, num_simhash_projections=3, seed=7
    )


@pytest.fixture
def make_point_cloud(rng):
    def _make(num_points: int, dimension: int = 8) -> np.ndarray:
        return rng.standard_normal((num_points, dimension)).astype(np.float32)

    return _make
