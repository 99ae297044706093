import math

import pytest

from blunav.distance import distance_to_rssi
from blunav.models import BeaconConfig

P0 = -59.0
N = 2.0


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DictBeacons:
    """最小的信标查询对象，替代 BeaconStore"""

    def __init__(self, beacons):
        self._beacons = {b.beacon_id: b for b in beacons}

    def get(self, beacon_id):
        return self._beacons.get(beacon_id)


def exact_rssi(beacon: BeaconConfig, point) -> float:
    d = math.dist((beacon.x, beacon.y), point)
    return distance_to_rssi(d, beacon.p0, beacon.n)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def triangle_beacons():
    return [
        BeaconConfig("B1", x=0.0, y=0.0, p0=P0, n=N),
        BeaconConfig("B2", x=10.0, y=0.0, p0=P0, n=N),
        BeaconConfig("B3", x=0.0, y=10.0, p0=P0, n=N),
    ]


@pytest.fixture
def square_beacons():
    return [
        BeaconConfig("S1", x=0.0, y=0.0, p0=P0, n=N),
        BeaconConfig("S2", x=10.0, y=0.0, p0=P0, n=N),
        BeaconConfig("S3", x=10.0, y=10.0, p0=P0, n=N),
        BeaconConfig("S4", x=0.0, y=10.0, p0=P0, n=N),
    ]


@pytest.fixture
def collinear_beacons():
    return [
        BeaconConfig("C1", x=0.0, y=0.0, p0=P0, n=N),
        BeaconConfig("C2", x=5.0, y=0.0, p0=P0, n=N),
        BeaconConfig("C3", x=10.0, y=0.0, p0=P0, n=N),
    ]


def true_ranges(beacons, point):
    return [(b, math.dist((b.x, b.y), point)) for b in beacons]
