from typing import Any, Optional

# ---------------- helpers ----------------
# Substrate values arrive either as plain python (dict/list/str/int) or wrapped in
# scale objects exposing `.value`; everything below accepts both.

def unwrap(x):
    if x is None: return None
    if isinstance(x, (dict, list, tuple, str, int, bytes, bytearray)): return x
    return getattr(x, "value", x)

def to_hex(x):
    x = unwrap(x)
    if x is None: return None
    if isinstance(x, (bytes, bytearray)): return "0x" + bytes(x).hex()
    if isinstance(x, int): return hex(x)
    if isinstance(x, (list, tuple)) and all(isinstance(b, int) and 0 <= b < 256 for b in x):
        return "0x" + bytes(x).hex()
    if isinstance(x, (list, tuple)) and len(x) == 1:
        return to_hex(x[0])
    return str(x)

def hex_to_int(x):
    x = unwrap(x)
    if x is None: return None
    if isinstance(x, int): return x
    if isinstance(x, (bytes, bytearray)): return int.from_bytes(x, "big")
    s = str(x).replace(",", "")
    return int(s, 16) if s.startswith("0x") else int(s)

def to_amount(x) -> Optional[str]:
    """Balances are stored as decimal TEXT; u128 overflows SQLite INTEGER."""
    v = hex_to_int(x)
    return None if v is None else str(v)

def to_account(x) -> Optional[str]:
    x = unwrap(x)
    if x is None: return None
    # MultiAccountId style enums: {"Id": ...}, {"AccountId20": ...}
    if isinstance(x, dict) and len(x) == 1:
        return to_account(next(iter(x.values())))
    return to_hex(x)

def chain_label(x) -> Optional[str]:
    """
    ChainId is an enum: {"Consensus": None} | {"Domain": n}.
    Normalized to "consensus" / "domain:<n>".
    """
    x = unwrap(x)
    if x is None: return None
    if isinstance(x, dict) and len(x) == 1:
        k, v = next(iter(x.items()))
        k = str(k).lower()
        return k if v is None else f"{k}:{hex_to_int(v)}"
    if isinstance(x, int): return f"domain:{x}"
    return str(x).lower()

def message_id(channel_id, nonce=None) -> Optional[str]:
    """
    "<channel>:<nonce>", the same string on both ends of a channel.
    Accepts either the two parts or a (channel, nonce) pair as first argument.
    """
    channel_id = unwrap(channel_id)
    if nonce is None and isinstance(channel_id, (list, tuple)) and len(channel_id) == 2:
        channel_id, nonce = channel_id
    if channel_id is None or nonce is None:
        return None
    return f"{hex_to_int(channel_id)}:{hex_to_int(nonce)}"

def attr(attributes, *names, default=None) -> Any:
    """Named lookup over event attributes (dict, list of {name,value}, or positional)."""
    attributes = unwrap(attributes)
    if isinstance(attributes, dict):
        for n in names:
            if n in attributes:
                return attributes[n]
        return default
    if isinstance(attributes, (list, tuple)):
        for item in attributes:
            item = unwrap(item)
            if isinstance(item, dict) and item.get("name") in names:
                return item.get("value")
    return default

def event_parts(record):
    """
    Return (pallet, name, attributes, extrinsic_idx) for one event record,
    or None if the record does not look like an event.
    """
    rec = unwrap(record)
    if not isinstance(rec, dict):
        return None
    ev = unwrap(rec.get("event")) or rec
    if not isinstance(ev, dict):
        return None
    pallet = ev.get("module_id") or rec.get("module_id")
    name   = ev.get("event_id") or rec.get("event_id")
    if not pallet or not name:
        return None
    attributes = ev.get("attributes", rec.get("attributes"))

    idx = rec.get("extrinsic_idx")
    if idx is None:
        phase = unwrap(rec.get("phase"))
        if isinstance(phase, dict) and "ApplyExtrinsic" in phase:
            idx = phase["ApplyExtrinsic"]
    return str(pallet), str(name), unwrap(attributes), (int(idx) if idx is not None else None)

def call_parts(extrinsic):
    """Return (module, function, args, signer, extrinsic_hash); missing parts are None."""
    ex = unwrap(extrinsic)
    if not isinstance(ex, dict):
        return None, None, {}, None, None
    call = unwrap(ex.get("call")) or {}
    args = {}
    for a in call.get("call_args") or []:
        a = unwrap(a)
        if isinstance(a, dict) and "name" in a:
            args[a["name"]] = a.get("value")
    return (
        call.get("call_module"),
        call.get("call_function"),
        args,
        to_account(ex.get("address")),
        to_hex(ex.get("extrinsic_hash")),
    )
