"""Check the hash links of a chain exported from GET /ledger/chain.

Only entry linkage can be checked offline; record payloads are not part of
the export. Run `pdpaudit verify-chain --db <ledger.db>` for the full check.
"""
import json, sys

from pdpaudit.hashing import chain_entry_hash


def first_break(entries):
    prev = None
    for expected_seq, entry in enumerate(entries, start=1):
        if entry.get("seq") != expected_seq:
            return expected_seq, "sequence gap"
        if entry.get("prevEntryHash") != prev:
            return expected_seq, "previous hash does not link"
        if entry.get("entryHash") != chain_entry_hash(prev, entry.get("payloadHash", "")):
            return expected_seq, "entry hash mismatch"
        prev = entry["entryHash"]
    return None


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python tools/verify_ledger_chain.py <ledger_chain_export.json>")
        raise SystemExit(2)
    with open(sys.argv[1], "r", encoding="utf-8") as f:
        entries = json.load(f)
    broken = first_break(entries)
    if broken:
        print(f"FAIL: {broken[1]} at seq {broken[0]}")
        raise SystemExit(1)
    print(f"PASS: ledger chain valid ({len(entries)} entries)")
