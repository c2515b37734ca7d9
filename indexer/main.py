import argparse, logging, uvloop

import config
from chain import connect_api
from db import db, ensure_schema, SqliteCheckpointStore
from events import XdmEventSink
from logs import setup_logging
from scanner import RunScanOptions, run_scan

log = logging.getLogger("indexer.main")

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Capture XDM events from a domain or consensus chain.")
    p.add_argument("chain", choices=config.CHAINS)
    p.add_argument("--start", type=int, help="override <CHAIN>_START_HEIGHT")
    p.add_argument("--end", type=int, help="override <CHAIN>_END_HEIGHT")
    p.add_argument("--workers", type=int, help="override BLOCK_CONCURRENCY")
    return p.parse_args(argv)

async def capture(cfg: config.ScanConfig):
    source = await connect_api(cfg.rpc_endpoints)
    try:
        conn = db(cfg.db_path)
        try:
            ensure_schema(conn)
            await run_scan(
                RunScanOptions.from_config(cfg),
                source=source,
                sink=XdmEventSink(conn),
                store=SqliteCheckpointStore(conn),
            )
        finally:
            conn.close()
    finally:
        await source.close()

def main(argv=None):
    args = parse_args(argv)
    setup_logging(config.LOG_LEVEL)
    # fails before any connection is attempted
    cfg = config.load_scan_config(args.chain, start=args.start, end=args.end, workers=args.workers)
    log.info("%s db=%s endpoints=%d workers=%d", cfg.log_prefix, cfg.db_path,
             len(cfg.rpc_endpoints), cfg.block_concurrency)
    uvloop.run(capture(cfg))

if __name__ == "__main__":
    main()
