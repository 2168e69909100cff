"""Tests for StanSBC utilities and global seeding."""

import numpy as np
import pytest

import stansbc

from stansbc import utils


class TestSeeds:
    """Test seed generation."""

    def test_get_rng_defaults_to_global(self):
        assert utils.get_rng() is stansbc.RNG

    def test_draw_seeds_reproducible(self):
        """The same seed gives the same replication seeds."""
        seeds = utils.draw_seeds(5, seed=3)
        np.testing.assert_array_equal(seeds, utils.draw_seeds(5, seed=3))
        assert seeds.shape == (5,)
        assert np.all((seeds >= 0) & (seeds < utils.MAX_SEED))

    def test_manual_seed_controls_global_draws(self):
        """Seeding the global RNG makes unseeded draws reproducible."""
        stansbc.manual_seed(42)
        first = utils.draw_seeds(4)
        stansbc.manual_seed(42)
        np.testing.assert_array_equal(first, utils.draw_seeds(4))


class TestFlattenChains:
    """Test merging of draw and chain axes."""

    def test_chain_major_order(self):
        """All draws of the first chain come before those of the second."""
        array = np.array([[0, 10], [1, 11], [2, 12]])
        np.testing.assert_array_equal(
            utils.flatten_chains(array), [0, 1, 2, 10, 11, 12]
        )

    def test_trailing_dimensions_kept(self):
        array = np.zeros((4, 2, 3))
        assert utils.flatten_chains(array).shape == (8, 3)

    def test_one_dimensional_unchanged(self):
        array = np.arange(5)
        np.testing.assert_array_equal(utils.flatten_chains(array), array)


class TestRankBins:
    """Test assignment of ranks to histogram bins."""

    def test_example(self):
        np.testing.assert_array_equal(
            utils.rank_bin_assignments(5, 2), [0, 0, 0, 1, 1]
        )

    def test_even_split(self):
        assignments = utils.rank_bin_assignments(100, 20)
        np.testing.assert_array_equal(np.bincount(assignments), np.full(20, 5))

    def test_uneven_split_sizes_differ_by_one(self):
        counts = np.bincount(utils.rank_bin_assignments(334, 20))
        assert len(counts) == 20
        assert counts.max() - counts.min() <= 1
        assert counts.sum() == 334

    def test_fewer_ranks_than_bins(self):
        """Each rank gets its own bin when bins outnumber ranks."""
        np.testing.assert_array_equal(
            utils.rank_bin_assignments(4, 20), [0, 1, 2, 3]
        )

    @pytest.mark.parametrize("n_ranks, n_bins", [(0, 5), (5, 0)])
    def test_invalid(self, n_ranks, n_bins):
        with pytest.raises(ValueError):
            utils.rank_bin_assignments(n_ranks, n_bins)


def test_lazy_import_returns_loaded_module():
    assert utils.lazy_import("stansbc.defaults") is stansbc.defaults
