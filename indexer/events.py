import json, logging, threading, time
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from helpers import (
    attr, call_parts, chain_label, event_parts,
    message_id, to_account, to_amount,
)

log = logging.getLogger("indexer.events")

XDM_PALLETS = ("Messenger", "Transporter")

# Transporter event -> (direction, status)
TRANSFER_EVENTS = {
    "OutgoingTransferInitiated":  ("outgoing", "initiated"),
    "OutgoingTransferSuccessful": ("outgoing", "successful"),
    "OutgoingTransferFailed":     ("outgoing", "failed"),
    "IncomingTransferSuccessful": ("incoming", "successful"),
    "IncomingTransferFailed":     ("incoming", "failed"),
}


@dataclass
class BlockContext:
    chain: str
    block_height: int
    block_hash: str
    extrinsics: List[Any]
    events: List[Any]


def _json(x) -> str:
    return json.dumps(x, default=str, sort_keys=True)


def decode_block(ctx: BlockContext) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Pure decode step: (xdm_event_rows, transfer_rows) for one block."""
    events, transfers = [], []
    for event_index, record in enumerate(ctx.events):
        try:
            decoded = _decode_event(ctx, event_index, record)
        except (ValueError, TypeError, AttributeError) as e:
            log.debug("[%s] #%s skipping malformed event %s: %s", ctx.chain, ctx.block_height, event_index, e)
            continue
        if decoded is None:
            continue
        event_row, transfer_row = decoded
        events.append(event_row)
        if transfer_row is not None:
            transfers.append(transfer_row)
    return events, transfers


def _decode_event(ctx, event_index, record):
    """(event_row, transfer_row or None) for an XDM event, None for any other pallet."""
    parts = event_parts(record)
    if parts is None:
        raise ValueError("unexpected event shape")
    pallet, name, attributes, ex_idx = parts
    if pallet not in XDM_PALLETS:
        return None

    msg = message_id(attr(attributes, "message_id")) or message_id(
        attr(attributes, "channel_id"), attr(attributes, "nonce")
    )
    row = {
        "chain": ctx.chain,
        "block_height": ctx.block_height,
        "block_hash": ctx.block_hash,
        "event_index": event_index,
        "extrinsic_index": ex_idx,
        "pallet": pallet,
        "name": name,
        "counterparty_chain_id": chain_label(attr(attributes, "chain_id", "dst_chain_id")),
        "channel_id": to_amount(attr(attributes, "channel_id")),
        "nonce": to_amount(attr(attributes, "nonce")),
        "message_id": msg,
        "amount": to_amount(attr(attributes, "amount")),
        "attributes_json": _json(attributes),
    }

    transfer = None
    if pallet == "Transporter" and name in TRANSFER_EVENTS:
        transfer = _transfer_row(ctx, event_index, ex_idx, name, attributes, msg)
    return row, transfer


def _transfer_row(ctx, event_index, ex_idx, name, attributes, msg):
    direction, status = TRANSFER_EVENTS[name]
    row = {
        "chain": ctx.chain,
        "block_height": ctx.block_height,
        "block_hash": ctx.block_hash,
        "event_index": event_index,
        "extrinsic_index": ex_idx,
        "extrinsic_hash": None,
        "direction": direction,
        "counterparty_chain_id": chain_label(attr(attributes, "chain_id")),
        "message_id": msg,
        "sender": None,
        "receiver": None,
        "amount": to_amount(attr(attributes, "amount")),
        "status": status,
    }
    # the initiating extrinsic carries sender and destination account
    if direction == "outgoing" and ex_idx is not None and 0 <= ex_idx < len(ctx.extrinsics):
        module, function, args, signer, ex_hash = call_parts(ctx.extrinsics[ex_idx])
        row["extrinsic_hash"] = ex_hash
        if module == "Transporter" and function == "transfer":
            row["sender"] = signer
            dst = args.get("dst_location") or {}
            row["receiver"] = to_account(attr(dst, "account_id"))
            if row["amount"] is None:
                row["amount"] = to_amount(args.get("amount"))
    return row


class XdmEventSink:
    """
    Stores XDM records for one block at a time. Each call replaces everything
    previously stored for (chain, height), so re-processing a height is a no-op
    in effect.
    """

    def __init__(self, conn):
        self.conn = conn
        self._lock = threading.Lock()

    def process(self, ctx: BlockContext) -> None:
        events, transfers = decode_block(ctx)
        key = (ctx.chain, ctx.block_height)
        with self._lock:
            self.conn.execute("BEGIN")
            try:
                self.conn.execute("DELETE FROM xdm_events WHERE chain=? AND block_height=?", key)
                self.conn.execute("DELETE FROM xdm_transfers WHERE chain=? AND block_height=?", key)
                self.conn.execute("""
                    INSERT OR REPLACE INTO blocks(
                        chain, height, hash, extrinsic_count, event_count, xdm_event_count, indexed_at
                    ) VALUES(?,?,?,?,?,?,?)
                """, (
                    ctx.chain, ctx.block_height, ctx.block_hash,
                    len(ctx.extrinsics), len(ctx.events), len(events), int(time.time()),
                ))
                if events:
                    self.conn.executemany("""
                        INSERT INTO xdm_events(
                            chain, block_height, block_hash, event_index, extrinsic_index,
                            pallet, name, counterparty_chain_id, channel_id, nonce, message_id,
                            amount, attributes_json
                        ) VALUES (
                            :chain, :block_height, :block_hash, :event_index, :extrinsic_index,
                            :pallet, :name, :counterparty_chain_id, :channel_id, :nonce, :message_id,
                            :amount, :attributes_json
                        )
                    """, events)
                if transfers:
                    self.conn.executemany("""
                        INSERT INTO xdm_transfers(
                            chain, block_height, block_hash, event_index, extrinsic_index,
                            extrinsic_hash, direction, counterparty_chain_id, message_id,
                            sender, receiver, amount, status
                        ) VALUES (
                            :chain, :block_height, :block_hash, :event_index, :extrinsic_index,
                            :extrinsic_hash, :direction, :counterparty_chain_id, :message_id,
                            :sender, :receiver, :amount, :status
                        )
                    """, transfers)
                self.conn.execute("COMMIT")
            except Exception:
                self.conn.execute("ROLLBACK")
                raise

        if events:
            log.info("[%s] #%s xdm events=%d transfers=%d",
                     ctx.chain, ctx.block_height, len(events), len(transfers))
