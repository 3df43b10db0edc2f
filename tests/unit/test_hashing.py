"""
Tests for seeded hashing and jitter.
"""

import pytest

from foryou.hashing import SeededRandom, fnv1a_32, hash_hex, seeded_jitter


class TestFnv:

    def test_known_vectors(self):
        assert hash_hex("") == "811c9dc5"
        assert fnv1a_32("a") == 0xE40C292C

    def test_astral_characters_hash_as_surrogate_pairs(self):
        assert fnv1a_32("\U0001F600") == fnv1a_32("\ud83d\ude00")


class TestJitter:

    @pytest.mark.parametrize("seed", ["a", "profile|2026-02-10|0", "x" * 100])
    def test_bounded(self, seed):
        assert -0.1 <= seeded_jitter(seed, 0.1) <= 0.1
        assert 0.0 <= SeededRandom.unit(seed) <= 1.0

    def test_deterministic(self):
        assert seeded_jitter("seed", 0.05) == seeded_jitter("seed", 0.05)
        assert seeded_jitter("seed", 0.05) != seeded_jitter("other", 0.05)
