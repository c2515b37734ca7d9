"""End-to-end tests for run_scan."""

import asyncio

import pytest

from scanner import RunScanOptions, resolve_start, run_scan
from conftest import FakeBlockSource, MemoryCheckpointStore, RecordingSink, RecordingSleep


def opts(start, end, workers=2, **kw):
    return RunScanOptions(chain="consensus", start=start, end=end, block_concurrency=workers,
                          retry_backoff_ms=10, retry_max_backoff_ms=40, **kw)


class TestResolveStart:

    def test_no_checkpoint_uses_requested(self):
        assert resolve_start(100, None) == 100

    def test_checkpoint_above_requested_wins(self):
        assert resolve_start(100, 150) == 150

    def test_requested_floor_above_checkpoint_wins(self):
        assert resolve_start(200, 150) == 200


class TestRunScan:

    @pytest.mark.asyncio
    async def test_out_of_order_failures_still_commit_whole_range(self, sink, store, no_sleep):
        source = FakeBlockSource(failures={103: 2})
        await run_scan(opts(100, 105), source=source, sink=sink, store=store, sleep=no_sleep)

        assert store.get("consensus") == 105
        assert sorted(sink.heights) == [100, 101, 102, 103, 104, 105]
        assert len(sink.heights) == len(set(sink.heights))
        assert store.writes == [100, 101, 102, 103, 104, 105]
        assert no_sleep.delays == [0.01, 0.02]

    @pytest.mark.asyncio
    async def test_resume_never_writes_below_checkpoint(self, sink, no_sleep):
        store = MemoryCheckpointStore({"consensus": 102})
        source = FakeBlockSource()
        await run_scan(opts(100, 105), source=source, sink=sink, store=store, sleep=no_sleep)

        assert sorted(sink.heights) == [102, 103, 104, 105]
        assert min(store.writes) >= 102
        assert store.writes == sorted(store.writes)
        assert store.get("consensus") == 105
        assert 100 not in source.hash_calls

    @pytest.mark.asyncio
    async def test_checkpoint_past_end_does_no_work(self, sink, no_sleep):
        store = MemoryCheckpointStore({"consensus": 500})
        source = FakeBlockSource()
        await run_scan(opts(100, 105), source=source, sink=sink, store=store, sleep=no_sleep)
        assert sink.heights == []
        assert store.writes == []
        assert not source.hash_calls

    @pytest.mark.asyncio
    async def test_empty_range_completes(self, sink, store, no_sleep, caplog):
        with caplog.at_level("INFO", logger="indexer.scan"):
            await run_scan(opts(10, 9), source=FakeBlockSource(), sink=sink, store=store, sleep=no_sleep)
        assert sink.heights == []
        assert store.get("consensus") is None
        assert "capture start: heights 10..9 (total 0)" in caplog.text
        assert "capture complete" in caplog.text

    @pytest.mark.asyncio
    async def test_more_workers_than_heights(self, sink, store, no_sleep):
        await run_scan(opts(1, 3, workers=8), source=FakeBlockSource(), sink=sink, store=store, sleep=no_sleep)
        assert sorted(sink.heights) == [1, 2, 3]
        assert store.get("consensus") == 3

    @pytest.mark.asyncio
    async def test_many_workers_many_failures(self, sink, store, no_sleep):
        failures = {h: h % 4 for h in range(0, 300)}
        await run_scan(opts(0, 299, workers=6), source=FakeBlockSource(failures), sink=sink,
                       store=store, sleep=no_sleep)
        assert sorted(sink.heights) == list(range(300))
        assert store.writes == list(range(300))

    @pytest.mark.asyncio
    async def test_checkpoint_failure_aborts_run(self, sink, no_sleep):
        store = MemoryCheckpointStore(fail_on=3)
        with pytest.raises(RuntimeError, match="disk full"):
            await run_scan(opts(1, 50, workers=3), source=FakeBlockSource(), sink=sink,
                           store=store, sleep=no_sleep)
        assert store.get("consensus") == 2
        # cancelled workers do not keep running after the abort
        seen = len(sink.heights)
        await asyncio.sleep(0.01)
        assert len(sink.heights) == seen

    @pytest.mark.asyncio
    async def test_uses_injected_logger_and_prefix(self, sink, store, no_sleep, caplog):
        import logging
        logger = logging.getLogger("test.capture")
        with caplog.at_level(logging.INFO, logger="test.capture"):
            await run_scan(opts(1, 2, log_prefix="[dom-0]"), source=FakeBlockSource(), sink=sink,
                           store=store, logger=logger, sleep=no_sleep)
        assert "[dom-0] capture start: heights 1..2 (total 2)" in caplog.text

    def test_options_from_config(self):
        from config import ScanConfig
        cfg = ScanConfig(chain="domain", rpc_endpoints=["ws://a"], start=5, end=9, db_path="x.sqlite",
                         block_concurrency=3, retry_backoff_ms=50, retry_max_backoff_ms=500)
        o = RunScanOptions.from_config(cfg)
        assert (o.chain, o.start, o.end, o.block_concurrency) == ("domain", 5, 9, 3)
        assert (o.retry_backoff_ms, o.retry_max_backoff_ms, o.log_prefix) == (50, 500, "[domain]")

    @pytest.mark.asyncio
    async def test_malformed_event_does_not_stall_checkpoint(self, conn, no_sleep):
        from db import SqliteCheckpointStore
        from events import XdmEventSink
        from test_events import ev

        bad = ev("Transporter", "OutgoingTransferInitiated",
                 {"chain_id": {"Domain": 0}, "message_id": [0, 1], "amount": "n/a"})
        source = FakeBlockSource(events={2: [bad]})
        store = SqliteCheckpointStore(conn)
        await run_scan(opts(1, 3), source=source, sink=XdmEventSink(conn), store=store, sleep=no_sleep)

        assert store.get("consensus") == 3
        assert no_sleep.delays == []
        assert source.hash_calls[2] == 1

    @pytest.mark.parametrize("workers", [0, -2])
    def test_non_positive_worker_count_rejected(self, workers):
        with pytest.raises(ValueError, match="block_concurrency"):
            opts(1, 5, workers=workers)
