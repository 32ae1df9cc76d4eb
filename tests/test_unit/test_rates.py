"""
Unit tests for rate schedules and the resolved rate model.
"""

import numpy as np
import pytest

from bdmm.core.intervals import IntervalIndex
from bdmm.models.rates import (
    BirthDeathMigrationParameters,
    EpidemiologicalParameters,
    InvalidParametersError,
    PiecewiseSchedule,
    RateModel,
    RhoSampling,
)


class TestPiecewiseSchedule:
    """Test schedule shapes and resolution onto the global grid."""

    def test_scalar_broadcast(self):
        schedule = PiecewiseSchedule(0.5).with_item_shape((3,))
        np.testing.assert_array_equal(schedule.values, [[0.5, 0.5, 0.5]])

    def test_single_epoch_without_epoch_axis(self):
        schedule = PiecewiseSchedule([1.0, 2.0]).with_item_shape((2,))
        assert schedule.values.shape == (1, 2)

    def test_single_type_epochs(self):
        schedule = PiecewiseSchedule([1.0, 2.0], change_times=[1.5]).with_item_shape((1,))
        np.testing.assert_array_equal(schedule.values, [[1.0], [2.0]])

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="expected"):
            PiecewiseSchedule([[1.0, 2.0]], change_times=[1.0]).with_item_shape((2,))

    def test_change_times_must_increase(self):
        with pytest.raises(ValueError):
            PiecewiseSchedule([[1.0], [2.0], [3.0]], change_times=[2.0, 1.0])

    def test_resolve_forward(self):
        schedule = PiecewiseSchedule([[1.0], [2.0]], change_times=[1.0])
        grid = IntervalIndex.collect(3.0, [1.0])
        np.testing.assert_array_equal(schedule.resolve(grid), [[1.0], [2.0]])

    def test_resolve_reverse_time(self):
        """Reversed schedules list values from the present backwards."""
        schedule = PiecewiseSchedule([[1.0], [2.0]], change_times=[1.0], reverse_time=True)
        np.testing.assert_array_equal(schedule.forward_change_times(3.0), [2.0])
        grid = IntervalIndex.collect(3.0, [2.0])
        np.testing.assert_array_equal(schedule.resolve(grid), [[2.0], [1.0]])

    def test_refine(self):
        schedule = PiecewiseSchedule([[1.0], [2.0]], change_times=[1.0])
        refined = schedule.refine([0.5, 1.0, 2.0])
        np.testing.assert_array_equal(refined.values, [[1.0], [1.0], [2.0], [2.0]])


class TestParameters:
    """Test parameter containers."""

    def test_defaults(self, two_type_params):
        assert two_type_params.migration_rate.values.shape == (1, 2, 2)
        assert not two_type_params.sampled_ancestors
        assert two_type_params.removal_always_one

    def test_no_migration_defaults_to_zero(self):
        params = BirthDeathMigrationParameters(
            n_types=2, birth_rate=1.0, death_rate=0.5, sampling_rate=0.1,
            root_frequencies=[0.5, 0.5],
        )
        np.testing.assert_array_equal(params.migration_rate.values, np.zeros((1, 2, 2)))

    def test_frequency_shape(self):
        with pytest.raises(ValueError, match="root_frequencies"):
            BirthDeathMigrationParameters(
                n_types=2, birth_rate=1.0, death_rate=0.5, sampling_rate=0.1,
                root_frequencies=[1.0],
            )

    def test_rho_shape(self):
        with pytest.raises(ValueError):
            RhoSampling([[0.5, 0.5]], times=[1.0, 2.0])

    def test_epidemiological_transform(self):
        epi = EpidemiologicalParameters(
            n_types=2,
            reproductive_number=[2.0, 1.5],
            become_uninfectious_rate=0.5,
            sampling_proportion=0.2,
            root_frequencies=[0.5, 0.5],
        )
        rates = epi.to_rates()
        np.testing.assert_allclose(rates.birth_rate.values, [[1.0, 0.75]])
        np.testing.assert_allclose(rates.sampling_rate.values, [[0.1, 0.1]])
        np.testing.assert_allclose(rates.death_rate.values, [[0.4, 0.4]])
        assert rates.removal_probability is None

    def test_epidemiological_merges_epochs(self):
        epi = EpidemiologicalParameters(
            n_types=1,
            reproductive_number=PiecewiseSchedule([2.0, 1.0], change_times=[1.0]),
            become_uninfectious_rate=PiecewiseSchedule([1.0, 2.0], change_times=[2.0]),
            sampling_proportion=0.5,
            root_frequencies=[1.0],
            removal_probability=0.5,
        )
        rates = epi.to_rates()
        np.testing.assert_array_equal(rates.birth_rate.change_times, [1.0, 2.0])
        np.testing.assert_allclose(rates.birth_rate.values[:, 0], [2.0, 1.0, 2.0])
        np.testing.assert_allclose(rates.sampling_rate.values[:, 0], [0.5, 0.5, 1.0])
        # death = delta - sampling * r
        np.testing.assert_allclose(rates.death_rate.values[:, 0], [0.75, 0.75, 1.5])
        assert rates.sampled_ancestors

    def test_epidemiological_negative_death(self):
        epi = EpidemiologicalParameters(
            n_types=1,
            reproductive_number=2.0,
            become_uninfectious_rate=1.0,
            sampling_proportion=1.5,
            root_frequencies=[1.0],
        )
        with pytest.raises(ValueError, match="negative"):
            epi.to_rates()


class TestRateModel:
    """Test RateModel.build and lookups."""

    def test_build_shapes(self, two_type_params):
        rates = RateModel.build(two_type_params, 2.0)
        assert rates.n_types == 2
        assert rates.n_intervals == 1
        assert rates.birth.shape == (2, 1)
        assert rates.migration.shape == (1, 2, 2)
        assert rates.rho.shape == (2, 1)

    def test_lookups(self, two_type_params):
        rates = RateModel.build(two_type_params, 2.0)
        assert rates.rate("birth", 1, 0) == 0.9
        assert rates.rate("sampling", 0, 0) == 0.3
        assert rates.migration_rate(0, 1, 0) == 0.15
        assert rates.migration_rate(1, 0, 0) == 0.25
        with pytest.raises(KeyError):
            rates.rate("removal", 0, 0)
        with pytest.raises(KeyError):
            rates.rate("migration", 0, 0)

    def test_migration_diagonal_ignored(self):
        params = BirthDeathMigrationParameters(
            n_types=2, birth_rate=1.0, death_rate=0.5, sampling_rate=0.1,
            migration_rate=[[-5.0, 0.2], [0.3, 7.0]], root_frequencies=[0.5, 0.5],
        )
        rates = RateModel.build(params, 1.0)
        np.testing.assert_array_equal(rates.migration[0], [[0.0, 0.2], [0.3, 0.0]])

    def test_epochs_resolved(self):
        params = BirthDeathMigrationParameters(
            n_types=1,
            birth_rate=PiecewiseSchedule([2.0, 1.0], change_times=[1.0]),
            death_rate=0.5,
            sampling_rate=PiecewiseSchedule([0.1, 0.3], change_times=[0.5], reverse_time=True),
            root_frequencies=[1.0],
        )
        rates = RateModel.build(params, 3.0)
        np.testing.assert_array_equal(rates.intervals.times, [1.0, 2.5, 3.0])
        np.testing.assert_array_equal(rates.birth[0], [2.0, 1.0, 1.0])
        np.testing.assert_array_equal(rates.sampling[0], [0.3, 0.3, 0.1])
        assert rates.rate("birth", 0, rates.interval_of(0.5)) == 2.0

    def test_change_time_beyond_horizon(self):
        params = BirthDeathMigrationParameters(
            n_types=1,
            birth_rate=PiecewiseSchedule([2.0, 1.0], change_times=[5.0]),
            death_rate=0.5, sampling_rate=0.1, root_frequencies=[1.0],
        )
        with pytest.raises(InvalidParametersError, match="exceeds horizon"):
            RateModel.build(params, 3.0)

    def test_reverse_change_time_before_horizon(self):
        params = BirthDeathMigrationParameters(
            n_types=1,
            birth_rate=PiecewiseSchedule([2.0, 1.0], change_times=[5.0], reverse_time=True),
            death_rate=0.5, sampling_rate=0.1, root_frequencies=[1.0],
        )
        with pytest.raises(InvalidParametersError):
            RateModel.build(params, 3.0)

    @pytest.mark.parametrize("field,value", [
        ("birth_rate", -1.0),
        ("death_rate", np.nan),
        ("removal_probability", 1.5),
        ("root_frequencies", [-1.0]),
    ])
    def test_invalid_values(self, field, value):
        kwargs = dict(
            n_types=1, birth_rate=1.0, death_rate=0.5, sampling_rate=0.1,
            root_frequencies=[1.0],
        )
        kwargs[field] = value
        with pytest.raises(InvalidParametersError):
            RateModel.build(BirthDeathMigrationParameters(**kwargs), 2.0)

    def test_rho(self):
        params = BirthDeathMigrationParameters(
            n_types=2, birth_rate=1.0, death_rate=0.5, sampling_rate=0.1,
            root_frequencies=[0.5, 0.5],
            rho=RhoSampling([[0.2, 0.0], [0.5, 0.4]], times=[1.0, 2.0]),
        )
        rates = RateModel.build(params, 2.0)
        np.testing.assert_array_equal(rates.rho, [[0.2, 0.5], [0.0, 0.4]])
        assert rates.rho_at(0, 1.0) == 0.2
        assert rates.rho_at(1, 2.0) == 0.4
        assert rates.rho_at(0, 1.5) == 0.0

    def test_rho_at_present_by_default(self):
        params = BirthDeathMigrationParameters(
            n_types=1, birth_rate=1.0, death_rate=0.5, sampling_rate=0.0,
            root_frequencies=[1.0], rho=RhoSampling([0.3]),
        )
        rates = RateModel.build(params, 4.0)
        assert rates.rho_at(0, 4.0) == 0.3
        assert rates.rho_at(0, 3.0) == 0.0

    def test_rho_out_of_range(self):
        params = BirthDeathMigrationParameters(
            n_types=1, birth_rate=1.0, death_rate=0.5, sampling_rate=0.0,
            root_frequencies=[1.0], rho=RhoSampling([1.3]),
        )
        with pytest.raises(InvalidParametersError):
            RateModel.build(params, 4.0)
