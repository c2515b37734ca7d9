import logging
from typing import Any, Dict, List, Sequence

from async_substrate_interface import AsyncSubstrateInterface

from helpers import to_hex, unwrap

log = logging.getLogger("indexer.chain")


class SubstrateBlockSource:
    """Block hash / body / events for one height, over a single substrate connection."""

    def __init__(self, substrate, url: str):
        self.substrate = substrate
        self.url = url

    async def get_block_hash(self, height: int) -> str:
        bh = await self.substrate.get_block_hash(block_id=int(height))
        if not bh:
            raise ValueError(f"got empty block hash for #{height}")
        return to_hex(bh)

    async def get_block(self, block_hash: str) -> Dict[str, Any]:
        blk = await self.substrate.get_block(block_hash=block_hash)
        if blk is None:
            raise ValueError(f"block {block_hash} not found")

        blk = unwrap(blk)
        if isinstance(blk, dict):
            extrinsics = (
                (blk.get("block") or {}).get("extrinsics")
                or blk.get("extrinsics")
                or []
            )
        else:
            extrinsics = getattr(blk, "extrinsics", None) or []

        if not isinstance(extrinsics, list):
            raise TypeError(f"expected extrinsic list, got {type(extrinsics).__name__}")
        return {"extrinsics": extrinsics}

    async def get_events_at(self, block_hash: str) -> List[Any]:
        events = await self.substrate.get_events(block_hash=block_hash)
        if not isinstance(events, list):
            raise TypeError(f"expected event list, got {type(events).__name__}")
        return events

    async def close(self):
        await self.substrate.close()


async def connect_api(endpoints: Sequence[str], factory=AsyncSubstrateInterface) -> SubstrateBlockSource:
    """Connect to the first reachable endpoint, in the order given."""
    for url in endpoints:
        try:
            substrate = factory(url)
            await substrate.initialize()
        except Exception as e:
            log.warning("rpc %s unreachable: %s", url, e)
            continue
        log.info("connected to %s", url)
        return SubstrateBlockSource(substrate, url)
    raise ConnectionError(f"no reachable rpc endpoint among {list(endpoints)}")
