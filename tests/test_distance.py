import math

import pytest

from blunav.distance import DistanceEstimator, distance_to_rssi, rssi_to_distance
from blunav.errors import EmptySampleSet, FailureKind, InvalidConfig, NumericalError
from blunav.models import BeaconConfig


@pytest.fixture
def beacon():
    return BeaconConfig("B1", x=0.0, y=0.0, p0=-59.0, n=2.0)


def test_reference_power_gives_unit_distance():
    assert rssi_to_distance(-59, -59, 2.0) == pytest.approx(1.0)


@pytest.mark.parametrize("rssi, expected", [(-65, 1.995), (-71, 3.981), (-79, 10.0)])
def test_log_distance_model(rssi, expected):
    assert rssi_to_distance(rssi, -59, 2.0) == pytest.approx(expected, rel=1e-3)


def test_weaker_signal_gives_larger_distance():
    distances = [rssi_to_distance(rssi, -59, 2.5) for rssi in range(-30, -101, -1)]
    assert all(b > a for a, b in zip(distances, distances[1:]))


def test_inverse_model_round_trip():
    for d in (0.5, 1.0, 3.7, 25.0):
        assert rssi_to_distance(distance_to_rssi(d, -59, 2.0), -59, 2.0) == pytest.approx(d)
    assert distance_to_rssi(0.0, -59, 2.0) == float("-inf")


@pytest.mark.parametrize("p0, n", [(None, 2.0), (-59.0, 0.0), (-59.0, -1.0), (-59.0, None), (math.nan, 2.0)])
def test_invalid_model_parameters(p0, n):
    with pytest.raises(InvalidConfig) as exc:
        DistanceEstimator().estimate(BeaconConfig("B", 0.0, 0.0, p0=p0, n=n), [-60])
    assert exc.value.kind is FailureKind.INVALID_CONFIG


def test_single_sample(beacon):
    estimate = DistanceEstimator(trim_fraction=0.2).estimate(beacon, [-65])
    assert estimate.beacon_id == "B1"
    assert estimate.sample_count == 1
    assert estimate.distance == pytest.approx(rssi_to_distance(-65, -59, 2.0))


def test_trim_fraction_discards_outliers(beacon):
    samples = [-60, -61, -59, -60, -95, -60, -20, -61, -59, -60]
    estimate = DistanceEstimator(trim_fraction=0.1).estimate(beacon, samples)
    # 去掉 -95 和 -20 后剩余 8 个，均值 -60
    assert estimate.sample_count == 8
    assert estimate.distance == pytest.approx(rssi_to_distance(-60, -59, 2.0))


def test_trim_count_takes_precedence(beacon):
    estimator = DistanceEstimator(trim_fraction=0.0, trim_count=2)
    rssi_avg, used = estimator.trimmed_mean([-100, -90, -60, -62, -64, -10, -20])
    assert used == 3
    assert rssi_avg == pytest.approx(-62.0)


def test_no_samples(beacon):
    with pytest.raises(EmptySampleSet):
        DistanceEstimator().estimate(beacon, [])


def test_nothing_left_after_trimming(beacon):
    with pytest.raises(EmptySampleSet):
        DistanceEstimator(trim_count=2).estimate(beacon, [-60, -61, -62, -63])


@pytest.mark.parametrize("kwargs", [{"trim_fraction": 0.5}, {"trim_fraction": -0.1}, {"trim_count": -1}])
def test_invalid_trim_settings(kwargs):
    with pytest.raises(InvalidConfig):
        DistanceEstimator(**kwargs)


def test_out_of_range_rssi_is_numerical_error(beacon):
    with pytest.raises(NumericalError):
        rssi_to_distance(-10000, -59, 2.0)
    with pytest.raises(NumericalError):
        DistanceEstimator().estimate(beacon, [-10000, -10000])
    # 极强信号下溢到 0，仍是合法距离
    assert rssi_to_distance(10000, -59, 2.0) == 0.0
