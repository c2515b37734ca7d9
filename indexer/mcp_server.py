# mcp_server.py - read-only MCP tools over the capture database
import os
from typing import Optional
from fastmcp import FastMCP
from pydantic import BaseModel, Field

import config
import queries
from db import ensure_schema

DB_PATH = config.db_path(os.environ)
db = queries.get_db(DB_PATH)
ensure_schema(db)
mcp = FastMCP("xdm-index-mcp", version="0.1.0")

# ---------- Typed input models ----------
class LatestIn(BaseModel):
    chain: Optional[str] = Field(None, pattern="^(domain|consensus)$")
    limit: int = Field(10, ge=1, le=500)

class BlockIn(BaseModel):
    chain: str = Field(pattern="^(domain|consensus)$")
    height: int = Field(ge=0)

class MessageIn(BaseModel):
    message_id: str = Field(description="'<channel>:<nonce>'")

# ---------- Tools ----------
@mcp.tool(name="scan_status")
def scan_status_t() -> dict:
    """Checkpoint and record counts per chain."""
    return {"db_path": DB_PATH, "chains": queries.scan_status(db)}

@mcp.tool(name="xdm_events_latest")
def xdm_events_latest_t(args: LatestIn):
    """Latest Messenger / Transporter events."""
    return queries.latest_events(db, args.limit, args.chain)

@mcp.tool(name="xdm_transfers_latest")
def xdm_transfers_latest_t(args: LatestIn):
    """Latest cross-chain transfers."""
    return queries.latest_transfers(db, args.limit, args.chain)

@mcp.tool(name="block_xdm")
def block_xdm_t(args: BlockIn):
    """One indexed block with its XDM events and transfers."""
    return queries.block_xdm(db, args.chain, args.height)

@mcp.tool(name="transfer_by_message")
def transfer_by_message_t(args: MessageIn):
    """Outgoing and incoming records of one transfer."""
    return queries.transfers_by_message(db, args.message_id)

if __name__ == "__main__":
    mcp.run(transport="http", host=config.MCP_HOST, port=config.MCP_PORT)
