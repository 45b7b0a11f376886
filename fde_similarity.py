# -*- coding: utf-8 -*-
"""Scoring between query and document encodings."""
from typing import Sequence, Union

import numpy as np

from fde_errors import DimensionMismatchError

FDELike = Union[np.ndarray, Sequence[float]]

def compute_fde_similarity(query_fde: FDELike, document_fde: FDELike) -> float:
    """
    Plain dot product of two encodings.

    No normalization is applied: a query encoding holds per-partition sums
    and a document encoding per-partition averages, and the product of the
    two is what approximates Chamfer similarity.
    """
    q = np.asarray(query_fde, dtype=np.float64).reshape(-1)
    d = np.asarray(document_fde, dtype=np.float64).reshape(-1)
    if q.shape[0] != d.shape[0]:
        raise DimensionMismatchError(
            f"FDE vectors must have same dimension for similarity computation: "
            f"{q.shape[0]} != {d.shape[0]}"
        )
    return float(np.dot(q, d))

def compute_batch_similarities(
    query_fde: FDELike, document_fdes: Union[np.ndarray, Sequence[FDELike]]
) -> np.ndarray:
    """Scores one query encoding against every row of ``document_fdes``."""
    q = np.asarray(query_fde, dtype=np.float32).reshape(-1)
    if not isinstance(document_fdes, np.ndarray):
        for i, doc in enumerate(document_fdes):
            if len(doc) != q.shape[0]:
                raise DimensionMismatchError(
                    f"Document FDE {i} has length {len(doc)}, query FDE has {q.shape[0]}"
                )
    docs = np.asarray(document_fdes, dtype=np.float32)
    if docs.size == 0:
        return np.zeros(0, dtype=np.float32)
    if docs.ndim != 2 or docs.shape[1] != q.shape[0]:
        raise DimensionMismatchError(
            f"Document FDEs of shape {docs.shape} cannot be scored against a "
            f"query FDE of length {q.shape[0]}"
        )
    return docs @ q
