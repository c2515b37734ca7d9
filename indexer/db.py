import os, sqlite3, time
from typing import Optional

SCHEMA = """
CREATE TABLE IF NOT EXISTS scan_state (
    chain                 TEXT PRIMARY KEY,
    last_processed_height INTEGER NOT NULL,
    updated_at            INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS blocks (
    chain            TEXT NOT NULL,
    height           INTEGER NOT NULL,
    hash             TEXT NOT NULL,
    extrinsic_count  INTEGER NOT NULL,
    event_count      INTEGER NOT NULL,
    xdm_event_count  INTEGER NOT NULL,
    indexed_at       INTEGER NOT NULL,
    PRIMARY KEY (chain, height)
);

-- every Messenger / Transporter event, decoded loosely
CREATE TABLE IF NOT EXISTS xdm_events (
    chain            TEXT NOT NULL,
    block_height     INTEGER NOT NULL,
    block_hash       TEXT NOT NULL,
    event_index      INTEGER NOT NULL,
    extrinsic_index  INTEGER,
    pallet           TEXT NOT NULL,
    name             TEXT NOT NULL,
    counterparty_chain_id TEXT,
    channel_id       TEXT,
    nonce            TEXT,
    message_id       TEXT,
    amount           TEXT,
    attributes_json  TEXT,
    PRIMARY KEY (chain, block_height, event_index)
);

-- transfers (outgoing + incoming), joined with the originating extrinsic where possible
CREATE TABLE IF NOT EXISTS xdm_transfers (
    chain                  TEXT NOT NULL,
    block_height           INTEGER NOT NULL,
    block_hash             TEXT NOT NULL,
    event_index            INTEGER NOT NULL,
    extrinsic_index        INTEGER,
    extrinsic_hash         TEXT,
    direction              TEXT NOT NULL,
    counterparty_chain_id  TEXT,
    message_id             TEXT,
    sender                 TEXT,
    receiver               TEXT,
    amount                 TEXT,
    status                 TEXT NOT NULL,
    PRIMARY KEY (chain, block_height, event_index)
);

CREATE INDEX IF NOT EXISTS idx_xdm_events_msg ON xdm_events(message_id);
CREATE INDEX IF NOT EXISTS idx_xdm_transfers_msg ON xdm_transfers(message_id);
"""

def db(path: str) -> sqlite3.Connection:
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    return conn

def ensure_schema(conn: sqlite3.Connection):
    conn.executescript(SCHEMA)

def get_last_processed_height(conn, chain: str) -> Optional[int]:
    row = conn.execute(
        "SELECT last_processed_height FROM scan_state WHERE chain=?", (chain,)
    ).fetchone()
    return int(row[0]) if row else None

def set_last_processed_height(conn, chain: str, height: int):
    conn.execute("""
        INSERT INTO scan_state(chain, last_processed_height, updated_at) VALUES(?,?,?)
        ON CONFLICT(chain) DO UPDATE SET
            last_processed_height=excluded.last_processed_height,
            updated_at=excluded.updated_at
    """, (chain, int(height), int(time.time())))


class SqliteCheckpointStore:
    """Checkpoint store over the scan_state table. `set` is durable once it returns."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, chain: str) -> Optional[int]:
        return get_last_processed_height(self.conn, chain)

    def set(self, chain: str, height: int) -> None:
        set_last_processed_height(self.conn, chain, height)
