"""Tests for SyncSettings and retry_transient."""

from __future__ import annotations

import pytest

from catalogsync._retry import retry_transient
from catalogsync.config import SyncSettings
from catalogsync.exceptions import (
    EmbeddingError,
    EmbeddingUnavailableError,
    StoreUnavailableError,
)
from catalogsync.search.types import Distance, HnswParams

# =========================================================================
# SyncSettings
# =========================================================================


class TestSyncSettings:
    def test_defaults(self) -> None:
        s = SyncSettings()
        assert s.batch_size == 100
        assert s.duplicate_threshold == 0.85
        assert s.validation_threshold == 0.90
        assert s.exact_match_threshold == 0.97
        assert s.default_distance == Distance.COSINE
        assert s.max_webhook_records == 500
        assert s.hnsw == HnswParams(m=16, ef_construct=100)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"batch_size": 0},
            {"batch_size": 10_001},
            {"embed_concurrency": 0},
            {"retry_attempts": 0},
            {"duplicate_threshold": 1.5},
            {"validation_threshold": -0.1},
            {"batch_delay": -1},
            {"stale_check_schedule": "every five minutes"},
            {"scheduler_poll_interval": 0},
        ],
    )
    def test_rejects_bad_values(self, kwargs) -> None:
        with pytest.raises(ValueError):
            SyncSettings(**kwargs)

    def test_from_env(self) -> None:
        s = SyncSettings.from_env(
            {
                "CATALOGSYNC_BATCH_SIZE": "250",
                "CATALOGSYNC_DUPLICATE_THRESHOLD": "0.9",
                "CATALOGSYNC_DEFAULT_DISTANCE": "dot",
                "CATALOGSYNC_RETRY_MIN_WAIT": "",
                "OTHER_BATCH_SIZE": "5",
            }
        )
        assert s.batch_size == 250
        assert s.duplicate_threshold == 0.9
        assert s.default_distance == Distance.DOT
        assert s.retry_min_wait == 0.5

    def test_from_env_custom_prefix(self) -> None:
        s = SyncSettings.from_env({"CS_NEIGHBOR_LIMIT": "5"}, prefix="CS_")
        assert s.neighbor_limit == 5

    def test_from_env_cron_strings(self) -> None:
        s = SyncSettings.from_env({"CATALOGSYNC_PURGE_SCHEDULE": "30 3 * * 0"})
        assert s.purge_schedule == "30 3 * * 0"
        assert s.stale_check_schedule == "*/5 * * * *"

    def test_from_env_invalid_number(self) -> None:
        with pytest.raises(ValueError):
            SyncSettings.from_env({"CATALOGSYNC_BATCH_SIZE": "lots"})


# =========================================================================
# retry_transient
# =========================================================================


class _Flaky:
    def __init__(self, failures: list[BaseException]) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self, value: int) -> int:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return value * 2


_FAST = SyncSettings(retry_attempts=3, retry_min_wait=0, retry_max_wait=0)


class TestRetryTransient:
    async def test_succeeds_first_time(self) -> None:
        fn = _Flaky([])
        assert await retry_transient(_FAST, fn, 4) == 8
        assert fn.calls == 1

    async def test_retries_transient_failures(self) -> None:
        fn = _Flaky([StoreUnavailableError("down"), EmbeddingUnavailableError("429")])
        assert await retry_transient(_FAST, fn, 4) == 8
        assert fn.calls == 3

    async def test_gives_up_after_attempts(self) -> None:
        fn = _Flaky([StoreUnavailableError(f"down {i}") for i in range(5)])
        with pytest.raises(StoreUnavailableError, match="down 2"):
            await retry_transient(_FAST, fn, 4)
        assert fn.calls == 3

    async def test_permanent_errors_not_retried(self) -> None:
        fn = _Flaky([EmbeddingError("bad input")])
        with pytest.raises(EmbeddingError):
            await retry_transient(_FAST, fn, 4)
        assert fn.calls == 1

    async def test_single_attempt_disables_retries(self) -> None:
        fn = _Flaky([StoreUnavailableError("down")])
        with pytest.raises(StoreUnavailableError):
            await retry_transient(
                SyncSettings(retry_attempts=1, retry_min_wait=0, retry_max_wait=0), fn, 1
            )
        assert fn.calls == 1
