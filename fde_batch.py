# -*- coding: utf-8 -*-
"""
Batch FDE generation.

Vector sets are encoded one at a time (or on a bounded thread pool) with
control handed back to the host between chunks of ``items_per_yield``
items. Cancellation is checked at the same points. When a batch is
cancelled, the items finished before the check are returned as-is and
the rest stay ``None``.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed

from fde_errors import ConfigurationError, DimensionMismatchError
from fde_generator import (
    EncodingType,
    FixedDimensionalEncoder,
    FixedDimensionalEncodingConfig,
    PointCloud,
)

ProgressFn = Callable[[int, int], None]
ItemOutcome = Tuple[int, Optional[np.ndarray], Optional[str]]

@dataclass
class BatchResult:
    fdes: List[Optional[np.ndarray]]
    fde_dimension: int
    rejected: Dict[int, str] = field(default_factory=dict)
    cancelled: bool = False
    completed: int = 0

    def succeeded(self) -> Iterator[Tuple[int, np.ndarray]]:
        for index, fde in enumerate(self.fdes):
            if fde is not None:
                yield index, fde

    def stack(self) -> np.ndarray:
        """Successful encodings as one [n, fde_dimension] array, in input order."""
        rows = [fde for _, fde in self.succeeded()]
        if not rows:
            return np.zeros((0, self.fde_dimension), dtype=np.float32)
        return np.vstack(rows)

def _is_cancelled(cancel_event) -> bool:
    return cancel_event is not None and cancel_event.is_set()

def _encode_item(
    encoder: FixedDimensionalEncoder,
    index: int,
    point_cloud: PointCloud,
    encoding_type: EncodingType,
) -> ItemOutcome:
    try:
        return index, encoder.encode(point_cloud, encoding_type), None
    except DimensionMismatchError as e:
        return index, None, str(e)

def _record(
    result: BatchResult, outcome: ItemOutcome, total: int, on_progress: Optional[ProgressFn]
) -> None:
    index, fde, error = outcome
    if error is not None:
        logging.warning(f"[FDE Batch] Vector set {index} rejected: {error}")
        result.rejected[index] = error
    else:
        result.fdes[index] = fde
    result.completed += 1
    if on_progress is not None:
        on_progress(result.completed, total)

def _start_batch(
    vector_sets: Sequence[PointCloud],
    config: FixedDimensionalEncodingConfig,
    encoding_type: Optional[EncodingType],
    items_per_yield: int,
) -> Tuple[FixedDimensionalEncoder, EncodingType, BatchResult]:
    if items_per_yield <= 0:
        raise ConfigurationError(f"items_per_yield must be positive: {items_per_yield}")
    if encoding_type is None:
        encoding_type = config.encoding_type

    num_sets = len(vector_sets)
    result = BatchResult(fdes=[None] * num_sets, fde_dimension=config.fde_dimension)
    encoder = FixedDimensionalEncoder(config)
    if num_sets == 0:
        logging.warning("[FDE Batch] Empty vector set list provided")
        return encoder, encoding_type, result

    logging.info(
        f"[FDE Batch] Starting {encoding_type.name} FDE generation for {num_sets} vector sets"
    )
    logging.info(
        f"[FDE Batch] Configuration: {config.num_repetitions} repetitions, "
        f"{config.num_partitions} partitions, projection_dim={config.projection_dim}, "
        f"output dim={config.fde_dimension}"
    )
    encoder.warm()
    return encoder, encoding_type, result

def _finish_batch(result: BatchResult, batch_start_time: float) -> BatchResult:
    total_time = time.perf_counter() - batch_start_time
    num_sets = len(result.fdes)
    if num_sets == 0:
        return result
    if result.cancelled:
        logging.info(
            f"[FDE Batch] Cancelled after {result.completed}/{num_sets} vector sets"
        )
    logging.info(f"[FDE Batch] Batch generation completed in {total_time:.3f}s")
    if result.completed and total_time > 0:
        logging.info(f"[FDE Batch] Throughput: {result.completed / total_time:.1f} sets/sec")
    if result.rejected:
        logging.warning(f"[FDE Batch] Rejected {len(result.rejected)} vector set(s)")
    return result

def _run_serial(
    encoder: FixedDimensionalEncoder,
    vector_sets: Sequence[PointCloud],
    encoding_type: EncodingType,
    result: BatchResult,
    on_progress: Optional[ProgressFn],
    items_per_yield: int,
    cancel_event,
) -> Iterator[None]:
    """Encodes chunk by chunk, yielding to the caller after each chunk."""
    total = len(vector_sets)
    for start in range(0, total, items_per_yield):
        if _is_cancelled(cancel_event):
            result.cancelled = True
            return
        for index in range(start, min(start + items_per_yield, total)):
            outcome = _encode_item(encoder, index, vector_sets[index], encoding_type)
            _record(result, outcome, total, on_progress)
        yield

def encode_batch(
    vector_sets: Sequence[PointCloud],
    config: FixedDimensionalEncodingConfig,
    encoding_type: Optional[EncodingType] = None,
    on_progress: Optional[ProgressFn] = None,
    items_per_yield: int = 10,
    n_jobs: int = 1,
    cancel_event=None,
) -> BatchResult:
    """
    Encodes every vector set with one shared encoder.

    Results are aligned with the input. A set with the wrong dimension is
    logged and recorded in ``rejected`` while the others proceed. With
    ``n_jobs != 1`` each chunk runs on a joblib thread pool.
    """
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, int) or n_jobs == 0:
        raise ConfigurationError(f"n_jobs must be a non-zero integer: {n_jobs!r}")
    batch_start_time = time.perf_counter()
    vector_sets = list(vector_sets)
    encoder, encoding_type, result = _start_batch(
        vector_sets, config, encoding_type, items_per_yield
    )
    total = len(vector_sets)

    if n_jobs == 1:
        for _ in _run_serial(
            encoder, vector_sets, encoding_type, result, on_progress, items_per_yield, cancel_event
        ):
            time.sleep(0)
        return _finish_batch(result, batch_start_time)

    with Parallel(n_jobs=n_jobs, prefer="threads") as parallel:
        for start in range(0, total, items_per_yield):
            if _is_cancelled(cancel_event):
                result.cancelled = True
                break
            end = min(start + items_per_yield, total)
            outcomes = parallel(
                delayed(_encode_item)(encoder, i, vector_sets[i], encoding_type)
                for i in range(start, end)
            )
            for outcome in outcomes:
                _record(result, outcome, total, on_progress)
    return _finish_batch(result, batch_start_time)

async def encode_batch_async(
    vector_sets: Sequence[PointCloud],
    config: FixedDimensionalEncodingConfig,
    encoding_type: Optional[EncodingType] = None,
    on_progress: Optional[ProgressFn] = None,
    items_per_yield: int = 10,
    cancel_event=None,
) -> BatchResult:
    """Same contract as :func:`encode_batch` for a single-threaded asyncio host."""
    batch_start_time = time.perf_counter()
    vector_sets = list(vector_sets)
    encoder, encoding_type, result = _start_batch(
        vector_sets, config, encoding_type, items_per_yield
    )
    for _ in _run_serial(
        encoder, vector_sets, encoding_type, result, on_progress, items_per_yield, cancel_event
    ):
        await asyncio.sleep(0)
    return _finish_batch(result, batch_start_time)
