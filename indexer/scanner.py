import asyncio, logging, threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Set

from events import BlockContext

log = logging.getLogger("indexer.scan")


# ---------- height allocation ----------
class HeightAllocator:
    """Hands out every height of [start, end] exactly once, then None."""

    def __init__(self, start: int, end: int):
        self._next = start
        self._end = end
        self._lock = threading.Lock()

    def next(self) -> Optional[int]:
        with self._lock:
            if self._next > self._end:
                return None
            h = self._next
            self._next += 1
            return h

    @property
    def remaining(self) -> int:
        with self._lock:
            return max(self._end - self._next + 1, 0)


# ---------- ordered commit ----------
class OrderedCommitTracker:
    """
    Takes completion notices in any order and writes the checkpoint only across
    a contiguous prefix: the stored height is always one up to which every
    height of the run has finished.

    All state changes and checkpoint writes happen under one lock. A failing
    checkpoint write is not caught here.
    """

    def __init__(self, store, chain: str, start: int, end: int, logger: Optional[logging.Logger] = None):
        self.store = store
        self.chain = chain
        self.end = end
        self.log = logger or log
        self._cursor = start
        self._pending: Set[int] = set()
        self._committed: Optional[int] = None
        self._lock = asyncio.Lock()

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def pending(self) -> Set[int]:
        return set(self._pending)

    @property
    def committed(self) -> Optional[int]:
        return self._committed

    async def mark_complete(self, height: int) -> None:
        async with self._lock:
            if height < self._cursor or height in self._pending:
                return
            if height > self.end:
                self.log.warning("[%s] completion for #%d outside run end %d ignored", self.chain, height, self.end)
                return
            self._pending.add(height)
            while self._cursor in self._pending:
                self.store.set(self.chain, self._cursor)
                self._pending.remove(self._cursor)
                self._committed = self._cursor
                self._cursor += 1


# ---------- per-height retry ----------
class HeightStatus(str, Enum):
    PENDING = "PENDING"
    FETCHING = "FETCHING"
    FAILED = "FAILED"
    DONE = "DONE"


@dataclass
class HeightRecord:
    height: int
    status: HeightStatus = HeightStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None


class RetryingWorker:
    """
    Pulls heights until the allocator runs dry. Each height is fetched and
    processed as one unit and retried from scratch with exponential backoff
    until it succeeds; the backoff starts over for the next height.
    """

    def __init__(
        self,
        *,
        allocator: HeightAllocator,
        tracker: OrderedCommitTracker,
        source,
        sink,
        chain: str,
        retry_backoff_ms: int,
        retry_max_backoff_ms: int,
        progress_every: int = 100,
        log_prefix: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        sleep=asyncio.sleep,
        worker_id: int = 0,
    ):
        self.allocator = allocator
        self.tracker = tracker
        self.source = source
        self.sink = sink
        self.chain = chain
        self.retry_backoff_ms = retry_backoff_ms
        self.retry_max_backoff_ms = retry_max_backoff_ms
        self.progress_every = progress_every
        self.log_prefix = log_prefix or f"[{chain}]"
        self.log = logger or log
        self.sleep = sleep
        self.worker_id = worker_id

    async def run(self) -> int:
        processed = 0
        while True:
            h = self.allocator.next()
            if h is None:
                self.log.debug("%s worker %d done after %d heights", self.log_prefix, self.worker_id, processed)
                return processed
            await self.process_height(h)
            processed += 1

    async def process_height(self, height: int) -> HeightRecord:
        rec = HeightRecord(height)
        backoff = self.retry_backoff_ms
        while True:
            rec.status = HeightStatus.FETCHING
            rec.attempts += 1
            try:
                await self._fetch_and_process(height)
            except Exception as err:
                rec.status = HeightStatus.FAILED
                rec.last_error = str(err) or type(err).__name__
                self.log.warning(
                    "%s error at #%d: %s. retrying in %dms",
                    self.log_prefix, height, rec.last_error, backoff,
                )
                await self.sleep(backoff / 1000)
                backoff = min(backoff * 2, self.retry_max_backoff_ms)
                continue
            rec.status = HeightStatus.DONE
            break

        # outside the retry scope: a checkpoint write failure ends the run
        await self.tracker.mark_complete(height)
        return rec

    async def _fetch_and_process(self, height: int):
        block_hash = await self.source.get_block_hash(height)
        block = await self.source.get_block(block_hash)
        events = await self.source.get_events_at(block_hash)
        if height % self.progress_every == 0:
            self.log.info("%s processing #%d", self.log_prefix, height)

        self.sink.process(BlockContext(
            chain=self.chain,
            block_height=height,
            block_hash=block_hash,
            extrinsics=list(block["extrinsics"]),
            events=events,
        ))


# ---------- orchestration ----------
@dataclass
class RunScanOptions:
    chain: str
    start: int
    end: int
    block_concurrency: int = 8
    retry_backoff_ms: int = 1000
    retry_max_backoff_ms: int = 10000
    progress_every: int = 100
    log_prefix: Optional[str] = None

    def __post_init__(self):
        if self.block_concurrency < 1:
            raise ValueError(f"block_concurrency must be >= 1, got {self.block_concurrency}")

    @classmethod
    def from_config(cls, cfg) -> "RunScanOptions":
        return cls(
            chain=cfg.chain,
            start=cfg.start,
            end=cfg.end,
            block_concurrency=cfg.block_concurrency,
            retry_backoff_ms=cfg.retry_backoff_ms,
            retry_max_backoff_ms=cfg.retry_max_backoff_ms,
            progress_every=cfg.progress_every,
            log_prefix=cfg.log_prefix,
        )


def resolve_start(requested: int, checkpoint: Optional[int]) -> int:
    """Never below the committed checkpoint, never below the requested floor."""
    return max(requested, checkpoint if checkpoint is not None else requested)


async def run_scan(opts: RunScanOptions, *, source, sink, store,
                   logger: Optional[logging.Logger] = None, sleep=asyncio.sleep) -> None:
    """
    Scan [max(start, checkpoint), end] with `block_concurrency` workers and
    return once every worker has drained the range. If a worker fails fatally
    the others are cancelled and the error propagates.
    """
    logger = logger or log
    prefix = opts.log_prefix or f"[{opts.chain}]"

    resume_from = store.get(opts.chain)
    scan_start = resolve_start(opts.start, resume_from)
    total = max(opts.end - scan_start + 1, 0)
    logger.info("%s capture start: heights %d..%d (total %d)", prefix, scan_start, opts.end, total)

    allocator = HeightAllocator(scan_start, opts.end)
    tracker = OrderedCommitTracker(store, opts.chain, scan_start, opts.end, logger=logger)

    workers = [
        RetryingWorker(
            allocator=allocator,
            tracker=tracker,
            source=source,
            sink=sink,
            chain=opts.chain,
            retry_backoff_ms=opts.retry_backoff_ms,
            retry_max_backoff_ms=opts.retry_max_backoff_ms,
            progress_every=opts.progress_every,
            log_prefix=prefix,
            logger=logger,
            sleep=sleep,
            worker_id=i,
        )
        for i in range(opts.block_concurrency)
    ]
    tasks = [asyncio.create_task(w.run(), name=f"{opts.chain}-worker-{w.worker_id}") for w in workers]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    logger.info("%s capture complete", prefix)
