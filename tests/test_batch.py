"""Tests for batch encoding: ordering, partial failure, progress, yielding and cancellation."""

import asyncio
import logging
import threading
from dataclasses import replace

import numpy as np
import pytest

from fde_batch import BatchResult, encode_batch, encode_batch_async
from fde_errors import ConfigurationError, DimensionMismatchError, EmptyInputWarning
from fde_generator import (
    EncodingType,
    FillStrategy,
    generate_document_fde,
    generate_query_fde,
)


@pytest.fixture
def vector_sets(make_point_cloud):
    return [make_point_cloud(n) for n in (3, 11, 1, 7, 5, 2)]


# ---------------------------------------------------------------------------
# Ordering and results
# ---------------------------------------------------------------------------


class TestBatchOrdering:
    @pytest.mark.parametrize("n_jobs", [1, 2])
    def test_results_follow_input_order(self, small_config, vector_sets, n_jobs):
        result = encode_batch(
            vector_sets, small_config, EncodingType.AVERAGE, items_per_yield=4, n_jobs=n_jobs
        )
        assert result.completed == len(vector_sets)
        assert not result.rejected and not result.cancelled
        for fde, points in zip(result.fdes, vector_sets):
            assert np.array_equal(fde, generate_document_fde(points, small_config))

    def test_defaults_to_config_encoding_type(self, small_config, vector_sets):
        result = encode_batch(vector_sets[:3], small_config)
        for fde, points in zip(result.fdes, vector_sets[:3]):
            assert np.array_equal(fde, generate_query_fde(points, small_config))

    def test_async_matches_sync(self, small_config, vector_sets):
        sync = encode_batch(vector_sets, small_config, EncodingType.AVERAGE)
        result = asyncio.run(
            encode_batch_async(vector_sets, small_config, EncodingType.AVERAGE, items_per_yield=2)
        )
        for a, b in zip(sync.fdes, result.fdes):
            assert np.array_equal(a, b)

    def test_stack(self, small_config, vector_sets):
        result = encode_batch(vector_sets, small_config)
        stacked = result.stack()
        assert stacked.shape == (len(vector_sets), small_config.fde_dimension)
        assert np.array_equal(stacked[3], result.fdes[3])

    def test_empty_batch(self, small_config):
        result = encode_batch([], small_config)
        assert result.fdes == []
        assert result.completed == 0
        assert result.stack().shape == (0, small_config.fde_dimension)

    def test_empty_vector_set_is_encoded_not_rejected(self, small_config, make_point_cloud):
        with pytest.warns(EmptyInputWarning):
            result = encode_batch([make_point_cloud(2), []], small_config)
        assert not result.rejected
        assert result.fdes[1].shape == (small_config.fde_dimension,)
        assert not result.fdes[1].any()


# ---------------------------------------------------------------------------
# Partial failure
# ---------------------------------------------------------------------------


class TestPartialFailure:
    def test_encode_raises_for_wide_vector(self, small_config, make_point_cloud):
        with pytest.raises(DimensionMismatchError):
            generate_query_fde(make_point_cloud(2, dimension=9), small_config)

    @pytest.mark.parametrize("n_jobs", [1, 2])
    def test_wide_item_is_skipped(self, small_config, make_point_cloud, caplog, n_jobs):
        sets = [make_point_cloud(4), make_point_cloud(2, dimension=9), make_point_cloud(3)]
        with caplog.at_level(logging.WARNING):
            result = encode_batch(sets, small_config, n_jobs=n_jobs)

        assert list(result.rejected) == [1]
        assert result.fdes[1] is None
        assert result.fdes[0] is not None and result.fdes[2] is not None
        assert [i for i, _ in result.succeeded()] == [0, 2]
        assert result.stack().shape == (2, small_config.fde_dimension)
        assert "Vector set 1 rejected" in caplog.text

    def test_configuration_errors_propagate(self, small_config, vector_sets):
        config = replace(
            small_config, fill_empty_partitions=True, fill_strategy=FillStrategy.NEAREST_POINT
        )
        with pytest.raises(ConfigurationError):
            encode_batch(vector_sets, config, EncodingType.DEFAULT_SUM)

    def test_items_per_yield_must_be_positive(self, small_config, vector_sets):
        with pytest.raises(ConfigurationError, match="items_per_yield"):
            encode_batch(vector_sets, small_config, items_per_yield=0)

    @pytest.mark.parametrize("n_jobs", [0, 1.5, True])
    def test_n_jobs_must_be_a_nonzero_integer(self, small_config, vector_sets, n_jobs):
        with pytest.raises(ConfigurationError, match="n_jobs"):
            encode_batch(vector_sets, small_config, n_jobs=n_jobs)

    @pytest.mark.parametrize("n_jobs", [1, 2])
    def test_ragged_item_is_skipped(self, small_config, make_point_cloud, n_jobs):
        ragged = np.empty(2, dtype=object)
        ragged[0] = make_point_cloud(1)[0].tolist()
        ragged[1] = [1.0, 2.0]
        sets = [make_point_cloud(4), ragged, make_point_cloud(3)]
        result = encode_batch(sets, small_config, n_jobs=n_jobs)

        assert list(result.rejected) == [1]
        assert "Vector 1" in result.rejected[1]
        assert [i for i, _ in result.succeeded()] == [0, 2]


# ---------------------------------------------------------------------------
# Progress, yielding and cancellation
# ---------------------------------------------------------------------------


class TestProgress:
    def test_progress_after_every_item(self, small_config, make_point_cloud):
        calls = []
        sets = [make_point_cloud(3), make_point_cloud(1, dimension=4), make_point_cloud(2)]
        encode_batch(sets, small_config, on_progress=lambda done, total: calls.append((done, total)))
        assert calls == [(1, 3), (2, 3), (3, 3)]

    def test_async_batch_yields_to_event_loop(self, small_config, vector_sets):
        progress = []

        async def main():
            ticks = []

            async def ticker():
                while True:
                    ticks.append(len(progress))
                    await asyncio.sleep(0)

            task = asyncio.create_task(ticker())
            await encode_batch_async(
                vector_sets,
                small_config,
                items_per_yield=1,
                on_progress=lambda done, total: progress.append(done),
            )
            task.cancel()
            return ticks

        ticks = asyncio.run(main())
        assert any(0 < t < len(vector_sets) for t in ticks)
        assert progress == list(range(1, len(vector_sets) + 1))


class TestCancellation:
    @pytest.mark.parametrize("n_jobs", [1, 2])
    def test_stops_at_next_yield_point(self, small_config, vector_sets, n_jobs):
        cancel = threading.Event()

        def on_progress(done, total):
            if done == 2:
                cancel.set()

        result = encode_batch(
            vector_sets,
            small_config,
            on_progress=on_progress,
            items_per_yield=2,
            n_jobs=n_jobs,
            cancel_event=cancel,
        )
        assert result.cancelled
        assert result.completed == 2
        assert result.fdes[0] is not None and result.fdes[1] is not None
        assert all(fde is None for fde in result.fdes[2:])

    def test_completed_entries_are_unchanged(self, small_config, vector_sets):
        cancel = threading.Event()
        result = encode_batch(
            vector_sets,
            small_config,
            on_progress=lambda done, total: cancel.set() if done == 3 else None,
            items_per_yield=3,
            cancel_event=cancel,
        )
        for fde, points in zip(result.fdes[:3], vector_sets):
            assert np.array_equal(fde, generate_query_fde(points, small_config))

    def test_cancelled_before_start(self, small_config, vector_sets):
        cancel = threading.Event()
        cancel.set()
        result = asyncio.run(encode_batch_async(vector_sets, small_config, cancel_event=cancel))
        assert result.cancelled
        assert result.completed == 0
        assert isinstance(result, BatchResult)
        assert result.stack().shape == (0, small_config.fde_dimension)
