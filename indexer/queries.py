# queries.py - read side over the capture database, used by the MCP tools
import os, sqlite3
from typing import Any, Dict, List, Optional

EVENT_COLS = """
    chain, block_height, block_hash, event_index, extrinsic_index, pallet, name,
    counterparty_chain_id, channel_id, nonce, message_id, amount
"""
TRANSFER_COLS = """
    chain, block_height, block_hash, event_index, extrinsic_index, extrinsic_hash,
    direction, counterparty_chain_id, message_id, sender, receiver, amount, status
"""

def get_db(path: str) -> sqlite3.Connection:
    if os.path.dirname(path):
        os.makedirs(os.path.dirname(path), exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn

def row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {k: row[k] for k in row.keys()}

def clamp_limit(limit, default: int = 10) -> int:
    return max(1, min(int(limit if limit is not None else default), 500))

def scan_status(db: sqlite3.Connection) -> Dict[str, Any]:
    """Checkpoint plus record counts, per chain."""
    out: Dict[str, Any] = {}
    for r in db.execute("SELECT chain, last_processed_height, updated_at FROM scan_state"):
        out[r["chain"]] = {
            "last_processed_height": r["last_processed_height"],
            "updated_at": r["updated_at"],
        }
    for table in ("blocks", "xdm_events", "xdm_transfers"):
        for r in db.execute(f"SELECT chain, COUNT(*) AS n FROM {table} GROUP BY chain"):
            out.setdefault(r["chain"], {})[table] = r["n"]
    return out

def latest_events(db, limit=10, chain: Optional[str] = None) -> List[Dict[str, Any]]:
    limit = clamp_limit(limit)
    if chain:
        rows = db.execute(f"""
            SELECT {EVENT_COLS} FROM xdm_events WHERE chain=?
            ORDER BY block_height DESC, event_index DESC LIMIT ?
        """, (chain, limit)).fetchall()
    else:
        rows = db.execute(f"""
            SELECT {EVENT_COLS} FROM xdm_events
            ORDER BY block_height DESC, event_index DESC LIMIT ?
        """, (limit,)).fetchall()
    return [row_to_dict(r) for r in rows]

def latest_transfers(db, limit=10, chain: Optional[str] = None) -> List[Dict[str, Any]]:
    limit = clamp_limit(limit)
    if chain:
        rows = db.execute(f"""
            SELECT {TRANSFER_COLS} FROM xdm_transfers WHERE chain=?
            ORDER BY block_height DESC, event_index DESC LIMIT ?
        """, (chain, limit)).fetchall()
    else:
        rows = db.execute(f"""
            SELECT {TRANSFER_COLS} FROM xdm_transfers
            ORDER BY block_height DESC, event_index DESC LIMIT ?
        """, (limit,)).fetchall()
    return [row_to_dict(r) for r in rows]

def block_xdm(db, chain: str, height: int) -> Dict[str, Any]:
    blk = db.execute("""
        SELECT chain, height, hash, extrinsic_count, event_count, xdm_event_count, indexed_at
        FROM blocks WHERE chain=? AND height=?
    """, (chain, height)).fetchone()
    if not blk:
        return {"error": f"{chain} block {height} not indexed"}
    out = row_to_dict(blk)
    out["events"] = [row_to_dict(r) for r in db.execute(f"""
        SELECT {EVENT_COLS} FROM xdm_events WHERE chain=? AND block_height=? ORDER BY event_index
    """, (chain, height))]
    out["transfers"] = [row_to_dict(r) for r in db.execute(f"""
        SELECT {TRANSFER_COLS} FROM xdm_transfers WHERE chain=? AND block_height=? ORDER BY event_index
    """, (chain, height))]
    return out

def transfers_by_message(db, message_id: str) -> List[Dict[str, Any]]:
    """Both sides of one transfer: the outgoing record and the incoming one, if captured."""
    if not message_id:
        return []
    rows = db.execute(f"""
        SELECT {TRANSFER_COLS} FROM xdm_transfers WHERE message_id=?
        ORDER BY direction DESC, chain, block_height, event_index
    """, (message_id,)).fetchall()
    return [row_to_dict(r) for r in rows]
