from dataclasses import FrozenInstanceError
import math
import random

import pytest

from trafficsim.simulation.weather import (CLEAR_WEATHER, TRANSITIONS, WeatherKind, WeatherState,
                                           begin_weather, choose_next_kind, next_weather)


class TestMultipliers:
    def test_clear_has_no_effect(self):
        assert CLEAR_WEATHER.speed_multiplier == 1.0
        assert CLEAR_WEATHER.visibility_multiplier == 1.0
        assert CLEAR_WEATHER.emergency_factor == 1.0
        assert CLEAR_WEATHER.describe() == 'Clear'

    def test_full_intensity_storm(self, storm):
        assert storm.speed_multiplier == pytest.approx(0.6)
        assert storm.visibility_multiplier == pytest.approx(0.3)
        assert storm.emergency_factor == pytest.approx(2.0)
        assert storm.describe() == 'Heavy Storm'

    def test_half_intensity_scales_linearly(self):
        snow = WeatherState(WeatherKind.SNOW, intensity=0.5, target_intensity=0.5)
        assert snow.speed_multiplier == pytest.approx(0.85)
        assert snow.visibility_multiplier == pytest.approx(0.8)
        assert snow.describe() == 'Moderate Snow'

    def test_multipliers_stay_in_range(self):
        for kind in WeatherKind:
            for intensity in (0.0, 0.25, 0.5, 1.0):
                state = WeatherState(kind, intensity=intensity, target_intensity=intensity)
                assert 0 < state.speed_multiplier <= 1.0
                assert 0 < state.visibility_multiplier <= 1.0
                assert state.emergency_factor >= 1.0

    @pytest.mark.parametrize('kwargs', [
        {'intensity': 1.5},
        {'intensity': -0.1},
        {'target_intensity': 2.0},
        {'ramp_rate': -1.0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            WeatherState(WeatherKind.RAIN, **kwargs)

    def test_state_is_immutable(self, storm):
        with pytest.raises(FrozenInstanceError):
            storm.intensity = 0.5


class TestRamp:
    def test_ramps_toward_target_then_holds(self):
        state = begin_weather(WeatherKind.RAIN, 0.8, ramp_duration=4.0, hold_duration=10.0)
        assert state.intensity == 0.0
        assert state.ramping
        state = next_weather(state, 2.0)
        assert state.intensity == pytest.approx(0.4)
        state = next_weather(state, 3.0)
        assert state.intensity == pytest.approx(0.8)
        assert not state.ramping
        assert state.remaining_duration == pytest.approx(9.0)

    def test_zero_ramp_jumps_to_target(self):
        state = begin_weather(WeatherKind.FOG, 0.6, ramp_duration=0.0)
        assert state.intensity == 0.6
        assert not state.ramping
        assert math.isinf(state.remaining_duration)

    def test_same_kind_continues_from_target(self):
        current = WeatherState(WeatherKind.SNOW, intensity=0.3, target_intensity=0.7, ramp_rate=0.1)
        state = begin_weather(WeatherKind.SNOW, 0.2, ramp_duration=5.0, current=current)
        assert state.intensity == 0.7
        assert state.ramp_rate == pytest.approx(0.1)
        state = next_weather(state, 5.0)
        assert state.intensity == pytest.approx(0.2)

    def test_new_kind_starts_from_zero(self, storm):
        state = begin_weather(WeatherKind.RAIN, 0.5, ramp_duration=5.0, current=storm)
        assert state.kind is WeatherKind.RAIN
        assert state.intensity == 0.0

    def test_clear_spell(self, storm):
        state = begin_weather(WeatherKind.CLEAR, 0.9, ramp_duration=2.0, hold_duration=8.0,
                              current=storm)
        assert state.kind is WeatherKind.CLEAR
        assert state.intensity == 0.0
        assert state.remaining_duration == 10.0

    def test_no_elapsed_time_is_noop(self, storm):
        assert next_weather(storm, 0.0) is storm

    def test_remaining_never_negative(self):
        state = begin_weather(WeatherKind.RAIN, 0.5, ramp_duration=1.0, hold_duration=1.0)
        assert next_weather(state, 5.0).remaining_duration == 0.0


class TestTransitions:
    def test_weights_sum_to_one(self):
        for kind, choices in TRANSITIONS.items():
            assert sum(weight for _, weight in choices) == pytest.approx(1.0), kind

    def test_choice_follows_table(self):
        rng = random.Random(3)
        for kind in WeatherKind:
            allowed = {choice for choice, _ in TRANSITIONS[kind]}
            for _ in range(50):
                assert choose_next_kind(kind, rng) in allowed

    def test_choice_is_reproducible(self):
        first = [choose_next_kind(WeatherKind.CLEAR, random.Random(11)) for _ in range(5)]
        second = [choose_next_kind(WeatherKind.CLEAR, random.Random(11)) for _ in range(5)]
        assert first == second
