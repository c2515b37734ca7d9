"""Shared fakes for the scan engine tests."""

import asyncio
from collections import Counter

import pytest

from db import db, ensure_schema


class FakeBlockSource:
    """Deterministic block source; `failures` maps height -> number of failing attempts."""

    def __init__(self, failures=None, events=None, extrinsics=None):
        self.failures = dict(failures or {})
        self.events = events or {}
        self.extrinsics = extrinsics or {}
        self.hash_calls = Counter()

    @staticmethod
    def hash_of(height):
        return "0x%064x" % height

    async def get_block_hash(self, height):
        self.hash_calls[height] += 1
        await asyncio.sleep(0)
        if self.failures.get(height, 0) > 0:
            self.failures[height] -= 1
            raise ConnectionError(f"node unavailable at {height}")
        return self.hash_of(height)

    async def get_block(self, block_hash):
        await asyncio.sleep(0)
        return {"extrinsics": self.extrinsics.get(int(block_hash, 16), [])}

    async def get_events_at(self, block_hash):
        await asyncio.sleep(0)
        return self.events.get(int(block_hash, 16), [])


class RecordingSink:
    def __init__(self):
        self.heights = []

    def process(self, ctx):
        self.heights.append(ctx.block_height)


class MemoryCheckpointStore:
    def __init__(self, initial=None, fail_on=None):
        self.values = dict(initial or {})
        self.writes = []
        self.fail_on = fail_on

    def get(self, chain):
        return self.values.get(chain)

    def set(self, chain, height):
        if self.fail_on is not None and height == self.fail_on:
            raise RuntimeError(f"disk full writing {height}")
        self.values[chain] = height
        self.writes.append(height)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def store():
    return MemoryCheckpointStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def no_sleep():
    return RecordingSleep()


@pytest.fixture
def conn(tmp_path):
    c = db(str(tmp_path / "exports" / "xdm.sqlite"))
    ensure_schema(c)
    yield c
    c.close()
