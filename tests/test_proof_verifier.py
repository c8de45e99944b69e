"""
Proof generation and verification.

Covers positive and negative soundness, binding of a proof to one challenge,
and the verifier's rule that every input yields a verdict instead of an
exception.
"""

import unittest
from dataclasses import replace
from unittest import mock

from pdpaudit import (
    Challenge,
    ChallengeReplayed,
    FailureReason,
    MissingBlock,
    MissingTag,
    Proof,
    Prover,
    Verdict,
    build_challenge,
    generate_proof,
    generate_tags,
    mu_bound,
    verify,
    verify_proof,
)

from pdpaudit.arithmetic import ladder_modpow
from pdpaudit.proof import mask_coefficient
from pdpaudit.tags import digest_block

from support import SMALL_PARAMS, flip_byte, make_blocks, rsa_params


class Fixture:
    """A tagged file whose blocks and tags live in plain dicts."""

    def __init__(self, params, file_id="F1", count=8):
        self.params = params
        self.file_id = file_id
        self.blocks = dict(enumerate(make_blocks(count, seed=file_id)))
        self.tags = {t.block_index: t.tag_value for t in generate_tags(file_id, self.blocks, params)}

    def fetch_block(self, file_id, index):
        return self.blocks.get(index) if file_id == self.file_id else None

    def fetch_tag(self, file_id, index):
        return self.tags.get(index) if file_id == self.file_id else None

    def prove(self, challenge):
        return generate_proof(challenge, self.fetch_block, self.fetch_tag, self.params)


class TestSoundness(unittest.TestCase):

    def setUp(self):
        self.f = Fixture(SMALL_PARAMS)

    def test_honest_proof_is_valid(self):
        ch = build_challenge("F1", self.f.tags, 5, SMALL_PARAMS)
        result = verify_proof(self.f.prove(ch), ch, self.f.tags, SMALL_PARAMS)
        self.assertTrue(result.is_valid(), result.reason)

    def test_every_single_block_subset_is_valid(self):
        for index in self.f.tags:
            ch = Challenge.from_pairs("F1", [(index, 12345)])
            self.assertIs(verify(self.f.prove(ch), ch, self.f.tags, SMALL_PARAMS), Verdict.VALID)

    def test_altered_block_is_invalid(self):
        self.f.blocks[3] = flip_byte(self.f.blocks[3])
        ch = Challenge.from_pairs("F1", [(1, 9), (3, 4)])
        result = verify_proof(self.f.prove(ch), ch, self.f.tags, SMALL_PARAMS)
        self.assertFalse(result.is_valid())
        self.assertEqual(result.reason, FailureReason.EQUATION_MISMATCH)

    def test_unchallenged_alteration_is_not_detected(self):
        self.f.blocks[7] = flip_byte(self.f.blocks[7])
        ch = Challenge.from_pairs("F1", [(0, 2), (1, 3)])
        self.assertIs(verify(self.f.prove(ch), ch, self.f.tags, SMALL_PARAMS), Verdict.VALID)

    def test_callable_tag_source(self):
        ch = Challenge.from_pairs("F1", [(0, 3), (5, 8)])
        self.assertIs(verify(self.f.prove(ch), ch, self.f.fetch_tag, SMALL_PARAMS), Verdict.VALID)

    def test_mu_hides_block_digests(self):
        params = rsa_params(2048)
        f = Fixture(params, count=4)
        c1, c2 = 2 ** 521 - 1, 2 ** 607 - 1
        ch = Challenge.from_pairs("F1", [(0, c1), (2, c2)])
        proof = f.prove(ch)
        m2 = digest_block("F1", 2, f.blocks[2], params)
        gamma = mask_coefficient("F1", ch.challenge_id, proof.aggregated_tag, proof.commitment)
        self.assertNotEqual(proof.mu * pow(c2, -1, c1) % c1, m2)
        self.assertNotEqual(proof.mu * pow(gamma * c2, -1, c1) % c1, m2)
        self.assertIs(verify(proof, ch, f.tags, params), Verdict.VALID)

    def test_mu_is_freshly_masked(self):
        ch = Challenge.from_pairs("F1", [(0, 3), (2, 7)])
        first, second = self.f.prove(ch), self.f.prove(ch)
        self.assertEqual(first.aggregated_tag, second.aggregated_tag)
        self.assertNotEqual(first.mu, second.mu)
        self.assertNotEqual(first.commitment, second.commitment)
        self.assertLess(first.mu, mu_bound(SMALL_PARAMS, 2))


class TestChallengeBinding(unittest.TestCase):

    def setUp(self):
        self.f = Fixture(SMALL_PARAMS)

    def test_replayed_proof_with_new_coefficients(self):
        round1 = Challenge.from_pairs("F1", [(0, 3), (2, 7)], challenge_id="round")
        round2 = Challenge.from_pairs("F1", [(0, 3), (2, 8)], challenge_id="round")
        stale = self.f.prove(round1)
        result = verify_proof(stale, round2, self.f.tags, SMALL_PARAMS)
        self.assertEqual(result.reason, FailureReason.TAG_MISMATCH)

    def test_proof_for_other_challenge(self):
        round1 = build_challenge("F1", self.f.tags, 3, SMALL_PARAMS)
        round2 = build_challenge("F1", self.f.tags, 3, SMALL_PARAMS)
        result = verify_proof(self.f.prove(round1), round2, self.f.tags, SMALL_PARAMS)
        self.assertEqual(result.reason, FailureReason.CHALLENGE_MISMATCH)

    def test_proof_for_other_file(self):
        other = Fixture(SMALL_PARAMS, file_id="F2")
        ch = Challenge.from_pairs("F1", [(0, 3)], challenge_id="c")
        forged = other.prove(Challenge.from_pairs("F2", [(0, 3)], challenge_id="c"))
        result = verify_proof(forged, ch, self.f.tags, SMALL_PARAMS)
        self.assertEqual(result.reason, FailureReason.FILE_MISMATCH)

    def test_forged_aggregate_tag(self):
        ch = Challenge.from_pairs("F1", [(0, 3)])
        proof = self.f.prove(ch)
        forged = replace(proof, aggregated_tag=(proof.aggregated_tag + 1) % SMALL_PARAMS.n)
        self.assertEqual(verify_proof(forged, ch, self.f.tags, SMALL_PARAMS).reason, FailureReason.TAG_MISMATCH)

    def test_forged_commitment(self):
        ch = Challenge.from_pairs("F1", [(0, 3)])
        proof = self.f.prove(ch)
        forged = replace(proof, commitment=proof.commitment * SMALL_PARAMS.g % SMALL_PARAMS.n)
        self.assertEqual(verify_proof(forged, ch, self.f.tags, SMALL_PARAMS).reason, FailureReason.EQUATION_MISMATCH)

    def test_commitment_solved_from_public_values(self):
        # R chosen to satisfy g^mu == R * T without any block data
        ch = Challenge.from_pairs("F1", [(0, 3), (2, 7)])
        n = SMALL_PARAMS.n
        t = self.f.tags[0] ** 3 * self.f.tags[2] ** 7 % n
        mu = 123456789
        r = SMALL_PARAMS.g_pow(mu) * pow(t, -1, n) % n
        forged = Proof("F1", ch.challenge_id, mu, t, r)
        self.assertEqual(verify_proof(forged, ch, self.f.tags, SMALL_PARAMS).reason, FailureReason.EQUATION_MISMATCH)

    def test_commitment_out_of_range(self):
        ch = Challenge.from_pairs("F1", [(0, 3)])
        proof = self.f.prove(ch)
        for commitment in (0, proof.commitment + SMALL_PARAMS.n):
            forged = replace(proof, commitment=commitment)
            self.assertEqual(verify_proof(forged, ch, self.f.tags, SMALL_PARAMS).reason, FailureReason.MALFORMED_PROOF)

    def test_mu_out_of_range(self):
        ch = Challenge.from_pairs("F1", [(0, 3)])
        proof = self.f.prove(ch)
        forged = replace(proof, mu=mu_bound(SMALL_PARAMS, 1))
        self.assertEqual(verify_proof(forged, ch, self.f.tags, SMALL_PARAMS).reason, FailureReason.MU_OUT_OF_RANGE)

    def test_empty_challenge(self):
        ch = Challenge.from_pairs("F1", [], challenge_id="c")
        proof = Proof("F1", "c", 0, 1, 1)
        self.assertEqual(verify_proof(proof, ch, self.f.tags, SMALL_PARAMS).reason, FailureReason.EMPTY_CHALLENGE)

    def test_missing_anchored_tag(self):
        ch = Challenge.from_pairs("F1", [(0, 3), (1, 4)])
        proof = self.f.prove(ch)
        tags = dict(self.f.tags)
        del tags[1]
        self.assertEqual(verify_proof(proof, ch, tags, SMALL_PARAMS).reason, FailureReason.MISSING_TAG)


class TestNeverRaises(unittest.TestCase):

    def setUp(self):
        self.f = Fixture(SMALL_PARAMS)
        self.ch = Challenge.from_pairs("F1", [(0, 3)], challenge_id="c")

    def test_malformed_inputs_are_invalid(self):
        cases = [
            {},
            {"fileId": "F1", "challengeRef": "c", "mu": "zz", "T": "1"},
            {"fileId": "F1", "challengeRef": "c", "mu": "-5", "T": "1"},
            {"fileId": "F1", "challengeRef": "c", "mu": 5, "T": "1"},
            {"fileId": "F1", "challengeRef": "c", "T": "1"},
        ]
        for case in cases:
            result = verify_proof(case, self.ch, self.f.tags, SMALL_PARAMS)
            self.assertEqual(result.verdict, Verdict.INVALID, case)
            self.assertEqual(result.reason, FailureReason.MALFORMED_PROOF, case)

    def test_unreduced_aggregate_tag(self):
        proof = self.f.prove(self.ch)
        forged = {**proof.to_dict(), "T": format(proof.aggregated_tag + SMALL_PARAMS.n, "x")}
        self.assertEqual(verify_proof(forged, self.ch, self.f.tags, SMALL_PARAMS).reason, FailureReason.MALFORMED_PROOF)

    def test_serialized_honest_proof_is_valid(self):
        proof = self.f.prove(self.ch).to_dict()
        self.assertIs(verify(proof, self.ch, self.f.tags, SMALL_PARAMS), Verdict.VALID)

    def test_verdict_status(self):
        self.assertEqual(Verdict.VALID.status, "SUCCESS")
        self.assertEqual(Verdict.INVALID.status, "MALICIOUS")


class TestProverFailures(unittest.TestCase):

    def setUp(self):
        self.f = Fixture(SMALL_PARAMS)

    def test_missing_block(self):
        del self.f.blocks[2]
        with self.assertRaises(MissingBlock) as ctx:
            self.f.prove(Challenge.from_pairs("F1", [(0, 3), (2, 7)]))
        self.assertEqual(ctx.exception.block_index, 2)

    def test_fetcher_key_error_is_missing_block(self):
        def fetch(file_id, index):
            raise KeyError(index)
        with self.assertRaises(MissingBlock):
            generate_proof(Challenge.from_pairs("F1", [(0, 3)]), fetch, self.f.fetch_tag, SMALL_PARAMS)

    def test_empty_stored_block_is_missing(self):
        self.f.blocks[0] = b""
        with self.assertRaises(MissingBlock):
            self.f.prove(Challenge.from_pairs("F1", [(0, 3)]))

    def test_missing_tag(self):
        del self.f.tags[4]
        with self.assertRaises(MissingTag):
            self.f.prove(Challenge.from_pairs("F1", [(4, 3)]))

    def test_prover_answers_each_challenge_once(self):
        prover = Prover(SMALL_PARAMS, self.f.fetch_block, self.f.fetch_tag)
        ch = Challenge.from_pairs("F1", [(0, 3)])
        prover.respond(ch)
        with self.assertRaises(ChallengeReplayed):
            prover(ch)

    def test_prover_forgets_oldest_beyond_capacity(self):
        prover = Prover(SMALL_PARAMS, self.f.fetch_block, self.f.fetch_tag, max_remembered=2)
        first = Challenge.from_pairs("F1", [(0, 3)], challenge_id="a")
        prover(first)
        prover(Challenge.from_pairs("F1", [(0, 3)], challenge_id="b"))
        prover(Challenge.from_pairs("F1", [(0, 3)], challenge_id="c"))
        prover(first)


class TestFixedTimeVerification(unittest.TestCase):

    def test_ladder_length_does_not_follow_mu(self):
        params = replace(SMALL_PARAMS, fixed_time=True)
        f = Fixture(params)
        ch = Challenge.from_pairs("F1", [(0, 3), (2, 7)])
        honest = f.prove(ch)
        proofs = [honest, replace(honest, mu=1), replace(honest, mu=mu_bound(params, 2) - 1)]
        with mock.patch("pdpaudit.params.ladder_modpow", wraps=ladder_modpow) as ladder:
            verdicts = [verify(p, ch, f.tags, params) for p in proofs]
        self.assertEqual(verdicts, [Verdict.VALID, Verdict.INVALID, Verdict.INVALID])
        self.assertEqual({c.args[3] for c in ladder.call_args_list}, {mu_bound(params, 2).bit_length()})
        self.assertEqual(ladder.call_count, 3)


class TestReferenceExample(unittest.TestCase):
    """2048-bit modulus, g = 5, four blocks, challenge {(0,3),(2,7)}."""

    @classmethod
    def setUpClass(cls):
        cls.params = rsa_params(2048)

    def setUp(self):
        self.f = Fixture(self.params, count=4)
        self.ch = Challenge.from_pairs("F1", [(0, 3), (2, 7)])

    def test_honest_proof_valid(self):
        self.assertIs(verify(self.f.prove(self.ch), self.ch, self.f.tags, self.params), Verdict.VALID)

    def test_flipped_byte_invalid(self):
        self.f.blocks[0] = flip_byte(self.f.blocks[0], 17)
        self.assertIs(verify(self.f.prove(self.ch), self.ch, self.f.tags, self.params), Verdict.INVALID)

    def test_fixed_time_parameters_agree(self):
        fixed = rsa_params(2048, fixed_time=True)
        f = Fixture(fixed, count=4)
        self.assertIs(verify(f.prove(self.ch), self.ch, f.tags, fixed), Verdict.VALID)


if __name__ == "__main__":
    unittest.main(verbosity=2)
