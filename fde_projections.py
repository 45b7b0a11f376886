# -*- coding: utf-8 -*-
"""
Seeded random projections used by the FDE pipeline.

Every matrix is a pure function of (seed + repetition, shape, kind): a query
and a document encoded in different processes see exactly the same
hyperplanes and the same sketch, which is what keeps their encodings
comparable.
"""
import logging
import threading
from enum import Enum
from typing import Dict, Tuple

import numpy as np

from fde_errors import ConfigurationError

class MatrixKind(Enum):
    SIMHASH = 0
    AMS_SKETCH = 1
    COUNT_SKETCH = 2

CacheKey = Tuple[int, int, MatrixKind, Tuple[int, int]]

# ------------------------------
# Stateless generators
# ------------------------------
def _check_shape(rows: int, cols: int) -> None:
    if rows <= 0 or cols <= 0:
        raise ConfigurationError(
            f"Projection shape must be positive, got ({rows}, {cols})"
        )

def _simhash_matrix_from_seed(
    dimension: int, num_projections: int, seed: int
) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.normal(loc=0.0, scale=1.0, size=(dimension, num_projections)).astype(
        np.float32
    )

def _ams_projection_matrix_from_seed(
    dimension: int, projection_dim: int, seed: int
) -> np.ndarray:
    rng = np.random.default_rng(seed)
    out = np.zeros((dimension, projection_dim), dtype=np.float32)
    indices = rng.integers(0, projection_dim, size=dimension)
    signs = rng.choice([-1.0, 1.0], size=dimension)
    out[np.arange(dimension), indices] = signs
    return out

def _count_sketch_hashes_from_seed(
    input_dim: int, final_dimension: int, seed: int
) -> Tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    indices = rng.integers(0, final_dimension, size=input_dim)
    signs = rng.choice([-1.0, 1.0], size=input_dim).astype(np.float32)
    return indices, signs

def projection_matrix(
    seed: int, repetition: int, rows: int, cols: int, kind: MatrixKind
) -> np.ndarray:
    """
    Builds the (rows x cols) matrix of the given kind for one repetition.

    SIMHASH: i.i.d. standard normal entries, drawn row-major.
    AMS_SKETCH: exactly one +-1 entry per row, at a uniformly chosen column.
    """
    _check_shape(rows, cols)
    current_seed = seed + repetition
    if kind == MatrixKind.SIMHASH:
        return _simhash_matrix_from_seed(rows, cols, current_seed)
    if kind == MatrixKind.AMS_SKETCH:
        return _ams_projection_matrix_from_seed(rows, cols, current_seed)
    raise ConfigurationError(f"{kind.name} is not a dense projection matrix")

def apply_count_sketch(
    input_vector: np.ndarray, indices: np.ndarray, signs: np.ndarray, final_dimension: int
) -> np.ndarray:
    out = np.zeros(final_dimension, dtype=np.float32)
    np.add.at(out, indices, signs * input_vector)
    return out

# ------------------------------
# Owned, per-config cache
# ------------------------------
class ProjectionGenerator:
    """
    Hands out projection matrices for one encoding configuration.

    Matrices are generated on first use and kept in a cache owned by this
    instance, keyed by (seed, repetition, kind, shape). Cached arrays are
    marked read-only so they can be shared between worker threads.
    """

    def __init__(self, seed: int):
        self.seed = seed
        self._cache: Dict[CacheKey, object] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._cache)

    def _get_or_build(self, key: CacheKey, build):
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        value = build()
        for arr in value if isinstance(value, tuple) else (value,):
            arr.flags.writeable = False

        with self._lock:
            # another thread may have raced us here; keep the first copy
            return self._cache.setdefault(key, value)

    def matrix(
        self, repetition: int, rows: int, cols: int, kind: MatrixKind
    ) -> np.ndarray:
        key = (self.seed, repetition, kind, (rows, cols))
        return self._get_or_build(
            key, lambda: projection_matrix(self.seed, repetition, rows, cols, kind)
        )

    def simhash_matrix(self, repetition: int, dimension: int, num_projections: int) -> np.ndarray:
        return self.matrix(repetition, dimension, num_projections, MatrixKind.SIMHASH)

    def ams_matrix(self, repetition: int, dimension: int, projection_dim: int) -> np.ndarray:
        return self.matrix(repetition, dimension, projection_dim, MatrixKind.AMS_SKETCH)

    def count_sketch(self, input_vector: np.ndarray, final_dimension: int) -> np.ndarray:
        """Re-projects a concatenated encoding down to ``final_dimension``."""
        input_dim = input_vector.shape[0]
        _check_shape(input_dim, final_dimension)
        key = (self.seed, 0, MatrixKind.COUNT_SKETCH, (input_dim, final_dimension))
        indices, signs = self._get_or_build(
            key,
            lambda: _count_sketch_hashes_from_seed(input_dim, final_dimension, self.seed),
        )
        return apply_count_sketch(input_vector, indices, signs, final_dimension)

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._cache)
            self._cache.clear()
        logging.debug(f"[FDE] Dropped {dropped} cached projection(s) for seed {self.seed}")
