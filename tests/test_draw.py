import random

import pytest

from wheel_payouts.draw import (
    WheelConfig,
    build_cumulative,
    select_index,
    simulate,
    validate_weights,
)
from wheel_payouts.errors import InvalidWeightDistribution, ValidationError


class FixedRandom:
    """random.Random stand-in returning scripted values."""

    def __init__(self, value, uniform_pick=0):
        self.value = value
        self.uniform_pick = uniform_pick
        self.randrange_calls = 0

    def random(self):
        return self.value

    def randrange(self, n):
        self.randrange_calls += 1
        return self.uniform_pick % n


def test_frequencies_converge_to_configured_weights():
    config = WheelConfig(labels=["1", "17711", "121393"], weights=["33.3", "33.3", "33.4"])
    freqs = simulate(config, 10000, random.Random(20240501))
    for observed, target in zip(freqs, [33.3, 33.3, 33.4]):
        assert abs(observed - target) <= 2.0


def test_skewed_weights_converge():
    config = WheelConfig(labels=["1", "2", "3", "4"], weights=["70", "20", "9.5", "0.5"])
    freqs = simulate(config, 20000, random.Random(7))
    assert abs(freqs[0] - 70) <= 2.0
    assert abs(freqs[1] - 20) <= 2.0
    assert abs(freqs[2] - 9.5) <= 2.0


def test_weights_outside_tolerance_refuse_the_draw():
    with pytest.raises(InvalidWeightDistribution):
        select_index(2, ["50", "40"], FixedRandom(0.1))


def test_tolerance_edges():
    assert validate_weights(["50", "50.5"]) == [50.0, 50.5]
    with pytest.raises(InvalidWeightDistribution):
        validate_weights(["50", "50.6"])


def test_unparsable_or_blank_weight_refuses_instead_of_equal_split():
    rng = FixedRandom(0.1)
    with pytest.raises(InvalidWeightDistribution):
        select_index(3, ["50", "", "50"], rng)
    with pytest.raises(InvalidWeightDistribution):
        select_index(2, ["abc", "100"], rng)
    with pytest.raises(InvalidWeightDistribution):
        select_index(2, ["150", "-50"], rng)
    assert rng.randrange_calls == 0


def test_empty_or_mismatched_weights_use_equal_split():
    rng = FixedRandom(0.99, uniform_pick=2)
    assert select_index(3, [], rng) == 2
    assert select_index(3, ["50", "50"], rng) == 2
    assert rng.randrange_calls == 2


def test_single_segment_is_refused():
    with pytest.raises(InvalidWeightDistribution):
        select_index(1, [], FixedRandom(0.5))


def test_first_bucket_above_r_wins_and_ties_go_low():
    weights = ["25", "25", "50"]
    assert build_cumulative([25.0, 25.0, 50.0]) == [25.0, 50.0, 100.0]
    assert select_index(3, weights, FixedRandom(0.0)) == 0
    assert select_index(3, weights, FixedRandom(0.2499)) == 0
    # r lands exactly on a boundary: the boundary belongs to the next segment.
    assert select_index(3, weights, FixedRandom(0.25)) == 1
    assert select_index(3, weights, FixedRandom(0.5)) == 2


def test_zero_weight_segment_is_never_chosen():
    weights = ["50", "0", "50"]
    for value in (0.0, 0.4999, 0.5, 0.75, 0.9999):
        assert select_index(3, weights, FixedRandom(value)) != 1


def test_no_matching_bucket_falls_back_to_uniform_pick():
    # random() == 1.0 puts r exactly on the last cumulative sum.
    rng = FixedRandom(1.0, uniform_pick=1)
    assert select_index(3, ["33.3", "33.3", "33.4"], rng) == 1
    assert rng.randrange_calls == 1


def test_default_config_is_drawable():
    config = WheelConfig()
    assert len(config.labels) == 9
    assert set(config.weights) == {"11.1"}
    assert 0 <= config.draw(random.Random(3)) < 9


def test_add_segment_keeps_existing_weights():
    config = WheelConfig(labels=["1", "2"], weights=["50.0", "50.0"])
    config.add_segment("3")
    assert config.labels == ["1", "2", "3"]
    assert config.weights == ["50.0", "50.0", "33.3"]
    config.add_segment("4", "not-a-number")
    assert config.weights[-1] == "25.0"
    config.add_segment("5", "12.345")
    assert config.weights[-1] == "12.3"
    with pytest.raises(ValidationError):
        config.add_segment("lots of money")


def test_remove_segment_keeps_two():
    config = WheelConfig(labels=["1", "2", "3"], weights=["30", "30", "40"])
    config.remove_segment(0)
    assert config.labels == ["2", "3"]
    assert config.weights == ["30", "40"]
    with pytest.raises(ValidationError):
        config.remove_segment(0)


def test_set_weight_equalize_and_reset():
    config = WheelConfig(labels=["1", "2"], weights=["50", "50"])
    config.set_weight(0, "60")
    assert config.weights == ["60.0", "50"]
    with pytest.raises(InvalidWeightDistribution):
        config.draw(FixedRandom(0.1))
    config.set_weight(1, "")
    assert config.weights[1] == ""
    with pytest.raises(ValidationError):
        config.set_weight(1, "lots")
    config.equalize()
    assert config.weights == ["50.0", "50.0"]
    config.reset()
    assert len(config.labels) == 9


def test_edits_on_a_mismatched_weight_list_start_from_the_equal_split():
    config = WheelConfig(labels=["1", "2", "3"], weights=["50", "50"])
    config.remove_segment(2)
    assert config.labels == ["1", "2"]
    assert config.weights == ["50.0", "50.0"]

    config = WheelConfig(labels=["1", "2", "3", "4"], weights=["50", "50"])
    config.set_weight(3, "10")
    assert config.weights == ["25.0", "25.0", "25.0", "10.0"]

    config = WheelConfig(labels=["1", "2"], weights=["100"])
    config.add_segment("3", "20")
    assert config.weights == ["50.0", "50.0", "20.0"]
