#!/usr/bin/env python3
"""
PDP Audit Example - Complete End-to-End Flow

A data owner uploads four encrypted blocks, the auditor runs two rounds
against an honest storage node, then the node silently corrupts a block and
the next round is recorded as MALICIOUS on the ledger.

Run with: python examples/audit_round_example.py
"""

import os

from pdpaudit import (
    AuditLedgerBinding,
    AuditService,
    InMemoryBlockStore,
    InMemoryLedger,
    KeyPairSigner,
    ModulusParameters,
    TrustStore,
    local_prover,
)

# Test-only modulus: product of the Mersenne primes 2^89 - 1 and 2^107 - 1.
DEMO_PARAMS = ModulusParameters(n=(2 ** 89 - 1) * (2 ** 107 - 1), g=5)


def encrypt_and_chunk(count: int, size: int = 256):
    """Stand-in for the owner's encryption pipeline."""
    return [os.urandom(size) for _ in range(count)]


def main():
    print("=" * 70)
    print("PDP Audit Ledger - End-to-End Example")
    print("=" * 70)

    print("\n[SETUP] Initializing ledger, signer and storage node...")
    signer = KeyPairSigner.generate("demo-ledger-01")
    trust = TrustStore(data=signer.trust_store())
    binding = AuditLedgerBinding(InMemoryLedger(), signer=signer)
    service = AuditService(DEMO_PARAMS, binding, sample_size=3)
    node = InMemoryBlockStore()
    prover = local_prover(DEMO_PARAMS, node, binding)
    print(f"  Modulus: {DEMO_PARAMS.bit_length} bits, g = {DEMO_PARAMS.g}")

    print("\n[STEP 1] Owner uploads and tags file F1...")
    blocks = encrypt_and_chunk(4)
    for i, data in enumerate(blocks):
        node.put_block("F1", i, data)
    records = service.ingest("F1", blocks, uid="owner-1")
    print(f"  Anchored {len(records)} tags, state = {binding.file_state('F1').value}")

    print("\n[STEP 2] Auditor runs two rounds against the honest node...")
    for _ in range(2):
        outcome = service.run_round("F1", prover)
        print(f"  Challenge {outcome.challenge.challenge_id[:12]}... "
              f"indices={outcome.challenge.indices} -> {outcome.verdict.value}")

    print("\n[STEP 3] Storage node corrupts block 2, auditor challenges everything...")
    corrupted = bytearray(blocks[2])
    corrupted[0] ^= 0xFF
    node.put_block("F1", 2, bytes(corrupted))
    outcome = service.run_round("F1", prover, sample_size=4)
    print(f"  Verdict: {outcome.verdict.value} ({outcome.record.reason})")

    print("\n[STEP 4] Audit history from the ledger...")
    for rec in binding.get_audit_history("F1"):
        print(f"  seq={rec.seq} status={rec.status.value} reason={rec.reason} at {rec.timestamp}")
    latest = binding.get_latest_audit_status("F1")
    print(f"  Latest: seq={latest.seq} {latest.status.value}")

    print("\n[STEP 5] Verifying ledger hash chain and signatures...")
    chain = binding.verify_chain(trust)
    print(f"  {'✓' if chain.valid else '✗'} {chain.entries} entries, valid={chain.valid}")

    print("\n" + "=" * 70)
    print("Example Complete")
    print("=" * 70)


if __name__ == "__main__":
    main()
