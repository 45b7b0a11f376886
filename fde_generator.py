# -*- coding: utf-8 -*-
import logging
import warnings
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from fde_errors import ConfigurationError, DimensionMismatchError, EmptyInputWarning
from fde_projections import ProjectionGenerator

PointCloud = Union[np.ndarray, Sequence[Sequence[float]]]

MAX_SIMHASH_PROJECTIONS = 31

class EncodingType(Enum):
    DEFAULT_SUM = 0
    AVERAGE = 1

class ProjectionType(Enum):
    DEFAULT_IDENTITY = 0
    AMS_SKETCH = 1

class FillStrategy(Enum):
    CONSTANT = 0
    NEAREST_POINT = 1

@dataclass(frozen=True)
class FixedDimensionalEncodingConfig:
    dimension: int = 128
    num_repetitions: int = 10
    num_simhash_projections: int = 6
    seed: int = 42
    encoding_type: EncodingType = EncodingType.DEFAULT_SUM
    projection_type: ProjectionType = ProjectionType.DEFAULT_IDENTITY
    projection_dimension: Optional[int] = None
    fill_empty_partitions: bool = False
    fill_strategy: FillStrategy = FillStrategy.CONSTANT
    fill_value: float = 0.001
    final_projection_dimension: Optional[int] = None

    def __post_init__(self):
        for name in (
            "dimension",
            "num_repetitions",
            "num_simhash_projections",
            "seed",
            "projection_dimension",
            "final_projection_dimension",
        ):
            value = getattr(self, name)
            if value is None and name.endswith("projection_dimension"):
                continue
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise ConfigurationError(f"{name} must be an integer: {value!r}")
        if self.dimension <= 0:
            raise ConfigurationError(f"dimension must be positive: {self.dimension}")
        if self.num_repetitions <= 0:
            raise ConfigurationError(
                f"num_repetitions must be positive: {self.num_repetitions}"
            )
        if not (0 <= self.num_simhash_projections <= MAX_SIMHASH_PROJECTIONS):
            raise ConfigurationError(
                f"num_simhash_projections must be in [0, {MAX_SIMHASH_PROJECTIONS}]: "
                f"{self.num_simhash_projections}"
            )
        if self.seed < 0:
            raise ConfigurationError(f"seed must be non-negative: {self.seed}")
        if (
            self.projection_type == ProjectionType.AMS_SKETCH
            and self.projection_dimension is not None
            and self.projection_dimension <= 0
        ):
            raise ConfigurationError(
                "A positive projection_dimension is required for non-identity projections."
            )
        if (
            self.final_projection_dimension is not None
            and self.final_projection_dimension <= 0
        ):
            raise ConfigurationError(
                f"final_projection_dimension must be positive: {self.final_projection_dimension}"
            )

    @property
    def num_partitions(self) -> int:
        return 2**self.num_simhash_projections

    @property
    def projection_dim(self) -> int:
        if self.projection_type == ProjectionType.DEFAULT_IDENTITY:
            return self.dimension
        return self.projection_dimension or self.dimension

    @property
    def fde_dimension(self) -> int:
        """Length of the encodings this config produces."""
        if self.final_projection_dimension:
            return self.final_projection_dimension
        return self.num_repetitions * self.num_partitions * self.projection_dim

# ------------------------------
# Gray code / hashing utilities
# ------------------------------
def _append_to_gray_code(gray_code: int, bit: bool) -> int:
    return (gray_code << 1) + (int(bit) ^ (gray_code & 1))

def _partition_sign_bits(partition_index: int) -> int:
    # inverse of the fold: the sign pattern is the Gray code of the index
    return partition_index ^ (partition_index >> 1)

def _simhash_partition_index_gray(sketch_vector: np.ndarray) -> int:
    partition_index = 0
    for val in sketch_vector:
        # a sketch of exactly zero maps to the 0 bit
        partition_index = _append_to_gray_code(partition_index, val > 0)
    return partition_index

def simhash_partition_index(vector: np.ndarray, simhash_matrix: np.ndarray) -> int:
    """Partition index of a single vector under one repetition's hyperplanes."""
    return _simhash_partition_index_gray(np.asarray(vector, dtype=np.float32) @ simhash_matrix)

def _partition_indices_from_sketches(sketches: np.ndarray) -> np.ndarray:
    bits = (sketches > 0).astype(np.int64)
    partition_indices = np.zeros(sketches.shape[0], dtype=np.int64)
    for bit_idx in range(sketches.shape[1]):
        partition_indices = (partition_indices << 1) + (
            bits[:, bit_idx] ^ (partition_indices & 1)
        )
    return partition_indices

def _partition_bits_table(num_bits: int) -> np.ndarray:
    """[num_partitions, num_bits] table of the sign bits owned by each partition."""
    indices = np.arange(1 << num_bits, dtype=np.int64)
    gray = _partition_sign_bits(indices)
    shifts = np.arange(num_bits - 1, -1, -1, dtype=np.int64)
    return ((gray[:, None] >> shifts[None, :]) & 1).astype(np.uint8)

# ------------------------------
# Input handling and projection
# ------------------------------
def _as_point_cloud(point_cloud: PointCloud, dimension: int) -> np.ndarray:
    if not isinstance(point_cloud, np.ndarray) or point_cloud.dtype == object:
        rows = list(point_cloud)
        for i, row in enumerate(rows):
            if np.shape(row) != (dimension,):
                raise DimensionMismatchError(
                    f"Vector {i} has shape {np.shape(row)}, expected ({dimension},)"
                )
        if not rows:
            return np.zeros((0, dimension), dtype=np.float32)
        point_cloud = np.asarray(rows)

    arr = np.asarray(point_cloud, dtype=np.float32)
    if arr.ndim == 1 and arr.size == 0:
        return arr.reshape(0, dimension)
    if arr.ndim != 2 or arr.shape[1] != dimension:
        raise DimensionMismatchError(
            f"Input data shape {arr.shape} is inconsistent with config dimension {dimension}."
        )
    return arr

def project_points(
    points: np.ndarray,
    projection_type: ProjectionType,
    ams_matrix: Optional[np.ndarray],
    projection_dim: int,
) -> np.ndarray:
    """
    Maps [N, D] points to [N, projection_dim].

    Projection is linear, so it commutes with the per-partition summation
    that follows; it only has to happen before vectors are accumulated.
    """
    if projection_type == ProjectionType.DEFAULT_IDENTITY:
        projected = points
    elif projection_type == ProjectionType.AMS_SKETCH:
        if ams_matrix is None:
            raise ConfigurationError("AMS sketch projection requires a projection matrix")
        if points.shape[1] != ams_matrix.shape[0]:
            raise DimensionMismatchError(
                f"Cannot project vectors of dimension {points.shape[1]} "
                f"with a {ams_matrix.shape} matrix"
            )
        projected = points @ ams_matrix
    else:
        raise ConfigurationError(f"Unsupported projection type: {projection_type}")

    if projected.shape[1] != projection_dim:
        raise DimensionMismatchError(
            f"Projected dimension {projected.shape[1]} != configured {projection_dim}"
        )
    return projected

# ------------------------------
# Aggregation
# ------------------------------
def aggregate_partitions(
    partition_indices: np.ndarray,
    projected_points: np.ndarray,
    num_partitions: int,
    encoding_type: EncodingType,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Buckets projected points by partition.

    Returns (sums [num_partitions, P], counts [num_partitions]). With
    AVERAGE each non-empty bucket is divided by its count; DEFAULT_SUM
    leaves the raw sums. Empty buckets stay zero here.
    """
    projection_dim = projected_points.shape[1]
    rep_fde_sum = np.zeros((num_partitions, projection_dim), dtype=np.float32)
    np.add.at(rep_fde_sum, partition_indices, projected_points)
    partition_counts = np.bincount(partition_indices, minlength=num_partitions).astype(
        np.int64
    )

    if encoding_type == EncodingType.AVERAGE:
        counts_2d = partition_counts[:, np.newaxis]
        np.divide(rep_fde_sum, counts_2d, out=rep_fde_sum, where=counts_2d > 0)
    return rep_fde_sum, partition_counts

def _fill_empty_partitions(
    rep_fde_sum: np.ndarray,
    partition_counts: np.ndarray,
    sketches: np.ndarray,
    projected_points: np.ndarray,
    config: FixedDimensionalEncodingConfig,
) -> int:
    empties = np.flatnonzero(partition_counts == 0)
    if empties.size == 0:
        return 0

    if config.fill_strategy == FillStrategy.CONSTANT:
        rep_fde_sum[empties, :] = config.fill_value
        return int(empties.size)

    # NEAREST_POINT: copy the point whose sign pattern is Hamming-closest
    if projected_points.shape[0] == 0:
        return 0
    point_bits = (sketches > 0).astype(np.uint8)                           # [N, k]
    target_bits = _partition_bits_table(config.num_simhash_projections)[empties]  # [E, k]
    distances = np.sum(target_bits[:, None, :] ^ point_bits[None, :, :], axis=2)  # [E, N]
    nearest = np.argmin(distances, axis=1)
    rep_fde_sum[empties, :] = projected_points[nearest]
    return int(empties.size)

# -----------------------------
# Core FDE generation routines
# -----------------------------
class FixedDimensionalEncoder:
    """
    Encodes point clouds under one configuration.

    Owns the projection cache for that configuration, so encoding many
    point clouds with one encoder generates each repetition's matrices
    once. Encoding itself keeps no state between calls.
    """

    def __init__(self, config: FixedDimensionalEncodingConfig):
        self.config = config
        self.projections = ProjectionGenerator(config.seed)

    def warm(self) -> None:
        """Generates every projection matrix up front."""
        config = self.config
        for rep_num in range(config.num_repetitions):
            self._simhash_matrix(rep_num)
            self._ams_matrix(rep_num)

    def _simhash_matrix(self, rep_num: int) -> Optional[np.ndarray]:
        if self.config.num_simhash_projections == 0:
            return None
        return self.projections.simhash_matrix(
            rep_num, self.config.dimension, self.config.num_simhash_projections
        )

    def _ams_matrix(self, rep_num: int) -> Optional[np.ndarray]:
        if self.config.projection_type != ProjectionType.AMS_SKETCH:
            return None
        return self.projections.ams_matrix(
            rep_num, self.config.dimension, self.config.projection_dim
        )

    def _sketch(self, points: np.ndarray, rep_num: int) -> np.ndarray:
        simhash_matrix = self._simhash_matrix(rep_num)
        if simhash_matrix is None:
            return np.zeros((points.shape[0], 0), dtype=np.float32)
        return points @ simhash_matrix

    def partition_indices(self, point_cloud: PointCloud, repetition: int = 0) -> np.ndarray:
        """Partition index of every vector for one repetition."""
        if not (0 <= repetition < self.config.num_repetitions):
            raise ValueError(
                f"repetition must be in [0, {self.config.num_repetitions}): {repetition}"
            )
        points = _as_point_cloud(point_cloud, self.config.dimension)
        return _partition_indices_from_sketches(self._sketch(points, repetition))

    def partition_counts(self, point_cloud: PointCloud, repetition: int = 0) -> np.ndarray:
        indices = self.partition_indices(point_cloud, repetition)
        return np.bincount(indices, minlength=self.config.num_partitions)

    def encode(
        self, point_cloud: PointCloud, encoding_type: Optional[EncodingType] = None
    ) -> np.ndarray:
        config = self.config
        if encoding_type is None:
            encoding_type = config.encoding_type
        if (
            encoding_type == EncodingType.DEFAULT_SUM
            and config.fill_empty_partitions
            and config.fill_strategy == FillStrategy.NEAREST_POINT
        ):
            raise ConfigurationError(
                "Query FDE generation does not support nearest-point partition filling."
            )

        points = _as_point_cloud(point_cloud, config.dimension)
        num_points = points.shape[0]
        if num_points == 0:
            warnings.warn(
                "Encoding an empty vector set; every partition keeps its empty value.",
                EmptyInputWarning,
                stacklevel=2,
            )

        num_partitions = config.num_partitions
        projection_dim = config.projection_dim
        block_size = num_partitions * projection_dim
        out_fde = np.zeros(config.num_repetitions * block_size, dtype=np.float32)

        for rep_num in range(config.num_repetitions):
            sketches = self._sketch(points, rep_num)
            partition_indices = _partition_indices_from_sketches(sketches)
            projected_points = project_points(
                points, config.projection_type, self._ams_matrix(rep_num), projection_dim
            )

            rep_fde_sum, partition_counts = aggregate_partitions(
                partition_indices, projected_points, num_partitions, encoding_type
            )
            if config.fill_empty_partitions:
                _fill_empty_partitions(
                    rep_fde_sum, partition_counts, sketches, projected_points, config
                )

            rep_start_index = rep_num * block_size
            out_fde[rep_start_index : rep_start_index + block_size] = rep_fde_sum.reshape(-1)

        if config.final_projection_dimension:
            return self.projections.count_sketch(out_fde, config.final_projection_dimension)
        return out_fde

    def encode_query(self, point_cloud: PointCloud) -> np.ndarray:
        return self.encode(point_cloud, EncodingType.DEFAULT_SUM)

    def encode_document(self, point_cloud: PointCloud) -> np.ndarray:
        return self.encode(point_cloud, EncodingType.AVERAGE)

def generate_query_fde(
    point_cloud: PointCloud, config: FixedDimensionalEncodingConfig
) -> np.ndarray:
    """Generates a Fixed Dimensional Encoding for a query point cloud (using SUM)."""
    query_config = replace(config, encoding_type=EncodingType.DEFAULT_SUM)
    return FixedDimensionalEncoder(query_config).encode(point_cloud)

def generate_document_fde(
    point_cloud: PointCloud, config: FixedDimensionalEncodingConfig
) -> np.ndarray:
    """Generates a Fixed Dimensional Encoding for a document point cloud (using AVERAGE)."""
    doc_config = replace(config, encoding_type=EncodingType.AVERAGE)
    return FixedDimensionalEncoder(doc_config).encode(point_cloud)

def generate_fde(
    point_cloud: PointCloud, config: FixedDimensionalEncodingConfig
) -> np.ndarray:
    if config.encoding_type == EncodingType.DEFAULT_SUM:
        return generate_query_fde(point_cloud, config)
    elif config.encoding_type == EncodingType.AVERAGE:
        return generate_document_fde(point_cloud, config)
    else:
        raise ConfigurationError(f"Unsupported encoding type in config: {config.encoding_type}")

def fde_compression_stats(num_vectors: int, config: FixedDimensionalEncodingConfig) -> dict:
    original_size = num_vectors * config.dimension
    encoded_size = config.fde_dimension
    ratio = original_size / encoded_size
    return {
        "original_size": original_size,
        "encoded_size": encoded_size,
        "compression_ratio": ratio,
        "memory_reduction": f"{(1 - encoded_size / original_size) * 100:.1f}%"
        if original_size
        else "n/a",
    }

# -------------------------
# Simple sanity test runner
# -------------------------
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    print(f"\n{'=' * 20} SCENARIO 1: Basic FDE Generation {'=' * 20}")

    base_config = FixedDimensionalEncodingConfig(
        dimension=128, num_repetitions=2, num_simhash_projections=4, seed=42
    )
    query_data = np.random.randn(32, base_config.dimension).astype(np.float32)
    doc_data = np.random.randn(80, base_config.dimension).astype(np.float32)

    query_fde = generate_query_fde(query_data, base_config)
    doc_fde = generate_document_fde(
        doc_data,
        replace(base_config, fill_empty_partitions=True, fill_strategy=FillStrategy.NEAREST_POINT),
    )
    print(f"Query FDE Shape: {query_fde.shape} (Expected: {base_config.fde_dimension})")
    print(f"Document FDE Shape: {doc_fde.shape} (Expected: {base_config.fde_dimension})")
    print(f"Similarity Score: {np.dot(query_fde, doc_fde):.4f}")

    print(f"\n{'=' * 20} SCENARIO 2: Inner Projection (AMS Sketch) {'=' * 20}")

    ams_config = replace(
        base_config, projection_type=ProjectionType.AMS_SKETCH, projection_dimension=16
    )
    query_fde_ams = generate_query_fde(query_data, ams_config)
    print(f"AMS Sketch FDE Shape: {query_fde_ams.shape} (Expected: {ams_config.fde_dimension})")

    print(f"\n{'=' * 20} SCENARIO 3: Final Projection (Count Sketch) {'=' * 20}")

    final_proj_config = replace(base_config, final_projection_dimension=1024)
    query_fde_final = generate_query_fde(query_data, final_proj_config)
    print(
        f"Final Projection FDE Shape: {query_fde_final.shape} "
        f"(Expected: {final_proj_config.final_projection_dimension})"
    )
    print(f"Compression: {fde_compression_stats(len(doc_data), base_config)}")
