"""
Tests for the xorshift random number generator.

Run with: pytest test_rng.py -v
"""

from guifuzz.rng import MASK64, ZERO_SEED_REPLACEMENT, Rng


class TestRng:
    """Test the generator state and output."""

    def test_first_value_for_seed_one(self):
        """Test the xorshift 13/17/43 step on a known seed."""
        assert Rng(1).rand() == 72066390130958337

    def test_same_seed_same_sequence(self):
        """Test that two generators with the same seed agree."""
        rng1 = Rng(0xDEADBEEF)
        rng2 = Rng(0xDEADBEEF)

        assert [rng1.rand() for _ in range(100)] == [rng2.rand() for _ in range(100)]

    def test_values_are_64_bit_and_never_zero(self):
        """Test the range of the generated values."""
        rng = Rng(12345)

        for _ in range(1000):
            value = rng.rand()
            assert 0 < value <= MASK64

    def test_zero_seed_is_replaced(self):
        """Test that a zero seed doesn't lock the generator at zero."""
        rng = Rng(0)

        assert rng.seed == ZERO_SEED_REPLACEMENT
        assert rng.rand() != 0

    def test_seed_is_truncated_to_64_bits(self):
        """Test that the seed is masked to 64 bits."""
        assert Rng((1 << 64) | 5).seed == 5

    def test_default_seed_differs_between_generators(self):
        """Test that generators created without seed are independent."""
        seeds = {Rng().seed for _ in range(10)}

        assert len(seeds) > 1


class TestRandrange:
    """Test the bounded helper."""

    def test_randrange_is_bounded(self):
        rng = Rng(7)

        for _ in range(200):
            assert 0 <= rng.randrange(10) < 10

    def test_randrange_of_zero(self):
        """Test that an empty range gives 0 without consuming a value."""
        rng = Rng(7)
        seed = rng.seed

        assert rng.randrange(0) == 0
        assert rng.seed == seed
