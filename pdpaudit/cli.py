#!/usr/bin/env python3
"""
PDP Audit Command Line Interface

Usage:
    pdpaudit params --params <file>
    pdpaudit tag --params <file> --file-id <id> [--db <ledger.db> --anchor] <block> [<block> ...]
    pdpaudit verify --params <file> --db <ledger.db> --challenge <file> --proof <file>
    pdpaudit status --db <ledger.db> --file-id <id>
    pdpaudit history --db <ledger.db> --file-id <id>
    pdpaudit verify-chain --db <ledger.db> [--trust-store <file>]
    pdpaudit serve [--host <host>] [--port <port>]
"""

import argparse
import json
import sys

from . import config


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _params(args):
    from .params import ModulusParameters
    return ModulusParameters.load(args.params, fixed_time=getattr(args, "fixed_time", False))


def _binding(args):
    from .binding import AuditLedgerBinding
    from .ledger import SqliteLedger
    return AuditLedgerBinding(SqliteLedger(args.db))


def cmd_params(args):
    """Validate and describe modulus parameters."""
    params = _params(args)
    print(json.dumps({"bits": params.bit_length, "g": params.to_dict()["g"]}, indent=2))
    return 0


def cmd_tag(args):
    """Tag block files (one file per block, in index order)."""
    from .tags import generate_tags

    params = _params(args)
    blocks = []
    for path in args.blocks:
        with open(path, 'rb') as f:
            blocks.append(f.read())

    tags = generate_tags(args.file_id, blocks, params)
    if args.anchor:
        if not args.db:
            print("--anchor requires --db", file=sys.stderr)
            return 2
        records = _binding(args).anchor_tags(args.file_id, tags, uid=args.uid)
        print(json.dumps([r.to_dict() for r in records], indent=2))
    else:
        print(json.dumps([t.to_dict() for t in tags], indent=2))
    return 0


def cmd_verify(args):
    """Verify a proof against a challenge and the tags anchored in the ledger."""
    from .transport import decode_challenge
    from .verifier import verify_proof

    params = _params(args)
    challenge = decode_challenge(load_json(args.challenge))
    proof = load_json(args.proof)
    tags = _binding(args).get_tag_values(challenge.file_id)
    result = verify_proof(proof, challenge, tags, params)
    print(json.dumps(result.to_dict(), indent=2))

    if result.is_valid():
        print("\n✓ VALID", file=sys.stderr)
        return 0
    print(f"\n✗ INVALID ({result.reason.value})", file=sys.stderr)
    return 1


def cmd_status(args):
    """Print the latest audit record and derived state for a file."""
    binding = _binding(args)
    latest = binding.get_latest_audit_status(args.file_id)
    out = {
        "fileId": args.file_id,
        "state": binding.file_state(args.file_id).value,
        "latest": latest.to_dict() if latest else None,
    }
    print(json.dumps(out, indent=2))
    return 0 if latest else 1


def cmd_history(args):
    """Print every audit record for a file, oldest first."""
    records = _binding(args).get_audit_history(args.file_id)
    print(json.dumps([r.to_dict() for r in records], indent=2))
    return 0


def cmd_verify_chain(args):
    """Recompute the ledger hash chain."""
    from .signing import TrustStore

    trust_store = TrustStore(args.trust_store) if args.trust_store else None
    result = _binding(args).verify_chain(trust_store)
    print(json.dumps(result.to_dict(), indent=2))
    if result.valid:
        print(f"\n✓ chain valid ({result.entries} entries)", file=sys.stderr)
        return 0
    print(f"\n✗ chain broken at entry {result.broken_at}", file=sys.stderr)
    return 1


def cmd_serve(args):
    """Run the HTTP service."""
    import uvicorn

    uvicorn.run("pdpaudit.api:app", host=args.host, port=args.port, log_config=None)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="pdpaudit",
        description="Provable data possession audits anchored in a tamper-evident ledger"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p = subparsers.add_parser("params", help="Validate modulus parameters")
    p.add_argument("--params", default=config.PARAMS_PATH, help="Params JSON file")
    p.set_defaults(func=cmd_params)

    p = subparsers.add_parser("tag", help="Compute (and optionally anchor) block tags")
    p.add_argument("--params", default=config.PARAMS_PATH, help="Params JSON file")
    p.add_argument("--file-id", required=True, help="File identifier")
    p.add_argument("--db", help="Ledger database")
    p.add_argument("--uid", help="Owner identifier recorded with the tags")
    p.add_argument("--anchor", action="store_true", help="Anchor tags in the ledger")
    p.add_argument("--fixed-time", action="store_true", help="Use fixed-time exponentiation")
    p.add_argument("blocks", nargs="+", help="Block files in index order")
    p.set_defaults(func=cmd_tag)

    p = subparsers.add_parser("verify", help="Verify a proof offline")
    p.add_argument("--params", default=config.PARAMS_PATH, help="Params JSON file")
    p.add_argument("--db", required=True, help="Ledger database")
    p.add_argument("--challenge", required=True, help="Challenge JSON file")
    p.add_argument("--proof", required=True, help="Proof JSON file")
    p.set_defaults(func=cmd_verify)

    p = subparsers.add_parser("status", help="Latest audit status of a file")
    p.add_argument("--db", required=True, help="Ledger database")
    p.add_argument("--file-id", required=True, help="File identifier")
    p.set_defaults(func=cmd_status)

    p = subparsers.add_parser("history", help="Audit history of a file")
    p.add_argument("--db", required=True, help="Ledger database")
    p.add_argument("--file-id", required=True, help="File identifier")
    p.set_defaults(func=cmd_history)

    p = subparsers.add_parser("verify-chain", help="Verify the ledger hash chain")
    p.add_argument("--db", required=True, help="Ledger database")
    p.add_argument("--trust-store", help="Trust store JSON for record signatures")
    p.set_defaults(func=cmd_verify_chain)

    p = subparsers.add_parser("serve", help="Run the HTTP service")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8080)
    p.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    from .errors import PdpError
    try:
        return args.func(args)
    except PdpError as e:
        print(f"error: {e.code}: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
