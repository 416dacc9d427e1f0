import random
from statistics import mean

import pytest

from trafficsim.config import SimulationConfig
from trafficsim.traffic.approach import Approach
from trafficsim.simulation.events import (EmergencyDispatch, EventPriority, EventQueue,
                                          EventScheduler, RushHourToggle, WeatherChange,
                                          geometric_delay, priority_of)
from trafficsim.simulation.weather import CLEAR_WEATHER


def dispatch(intersection_id=0, approach=Approach.NORTH):
    return EmergencyDispatch(intersection_id, approach, 15.0)


def make_scheduler(**kwargs):
    kwargs.setdefault('random_seed', 5)
    queue = EventQueue()
    return EventScheduler(SimulationConfig(**kwargs), queue, random.Random(5), [0]), queue


class TestEventQueue:
    def test_priority_by_type(self):
        assert priority_of(dispatch()) is EventPriority.EMERGENCY
        assert priority_of(WeatherChange(CLEAR_WEATHER)) is EventPriority.WEATHER
        assert priority_of(RushHourToggle(2.0)) is EventPriority.RUSH_HOUR
        with pytest.raises(TypeError):
            priority_of('storm')

    def test_same_tick_applied_in_priority_order(self):
        queue = EventQueue()
        queue.push(RushHourToggle(2.0), 5)
        queue.push(WeatherChange(CLEAR_WEATHER), 5)
        queue.push(dispatch(), 5)
        events = [scheduled.event for scheduled in queue.pop_due(5)]
        assert [type(event) for event in events] == [EmergencyDispatch, WeatherChange, RushHourToggle]
        assert len(queue) == 0

    def test_pop_due_leaves_future_events(self):
        queue = EventQueue()
        queue.push(dispatch(), 3)
        queue.push(RushHourToggle(2.0), 10)
        assert queue.pop_due(2) == []
        assert [scheduled.due_tick for scheduled in queue.pop_due(4)] == [3]
        assert queue.peek().due_tick == 10

    def test_overdue_events_still_ordered_by_priority(self):
        queue = EventQueue()
        queue.push(RushHourToggle(2.0), 1)
        queue.push(dispatch(), 2)
        assert [scheduled.priority for scheduled in queue.pop_due(2)] == [
            EventPriority.EMERGENCY, EventPriority.RUSH_HOUR
        ]

    def test_equal_events_keep_insertion_order(self):
        queue = EventQueue()
        first = queue.push(dispatch(approach=Approach.EAST), 1)
        second = queue.push(dispatch(approach=Approach.WEST), 1)
        assert queue.pop_due(1) == [first, second]


class TestEmergencyDispatch:
    @pytest.mark.parametrize('duration', [0.0, -5.0, float('nan')])
    def test_duration_must_be_positive(self, duration):
        with pytest.raises(ValueError):
            EmergencyDispatch(0, Approach.NORTH, duration)

    def test_approach_must_be_an_approach(self):
        with pytest.raises(TypeError):
            EmergencyDispatch(0, 'N', 5.0)


class TestGeometricDelay:
    def test_bounds(self):
        rng = random.Random(1)
        assert geometric_delay(0.0, rng) is None
        assert geometric_delay(1.0, rng) == 1
        assert all(geometric_delay(0.5, rng) >= 1 for _ in range(100))

    def test_mean_matches_probability(self):
        rng = random.Random(42)
        delays = [geometric_delay(0.1, rng) for _ in range(2000)]
        assert 8 < mean(delays) < 12


class TestScheduler:
    def test_prime_schedules_each_enabled_class(self):
        scheduler, queue = make_scheduler()
        scheduler.prime(0, CLEAR_WEATHER)
        assert sorted(scheduled.priority for scheduled in queue.pending()) == [
            EventPriority.EMERGENCY, EventPriority.WEATHER, EventPriority.RUSH_HOUR
        ]
        assert all(scheduled.recurring for scheduled in queue.pending())

    def test_prime_skips_disabled_classes(self):
        scheduler, queue = make_scheduler(weather_enabled=False)
        scheduler.prime(0, CLEAR_WEATHER)
        assert len(queue) == 2
        scheduler, queue = make_scheduler(emergency_enabled=False, weather_enabled=False,
                                          rush_hour_enabled=False)
        scheduler.prime(0, CLEAR_WEATHER)
        assert len(queue) == 0

    def test_rush_hour_alternates(self):
        scheduler, queue = make_scheduler(rush_hour_multiplier=3.0)
        busy = scheduler.schedule_rush_hour(0, RushHourToggle(1.0))
        assert busy.event.spawn_multiplier == 3.0
        normal = scheduler.schedule_rush_hour(busy.due_tick, busy.event)
        assert normal.event.spawn_multiplier == 1.0

    def test_weather_delay_within_jitter(self):
        scheduler, queue = make_scheduler(weather_interval_ticks=100, weather_jitter_ticks=10)
        for _ in range(50):
            scheduled = scheduler.schedule_weather(0, CLEAR_WEATHER)
            assert 90 <= scheduled.due_tick <= 110
            assert 0.0 <= scheduled.event.new_state.target_intensity <= 1.0

    def test_emergency_targets_known_intersection(self):
        queue = EventQueue()
        scheduler = EventScheduler(SimulationConfig(emergency_probability=0.5), queue,
                                   random.Random(9), [3, 1])
        for _ in range(20):
            scheduled = scheduler.schedule_emergency(0, CLEAR_WEATHER)
            assert scheduled.event.intersection_id in (1, 3)
            assert scheduled.event.priority_duration == 15.0

    def test_reschedule_only_recurring(self):
        scheduler, queue = make_scheduler()
        one_off = queue.push(RushHourToggle(2.0), 1)
        queue.pop_due(1)
        scheduler.reschedule(one_off, 1, CLEAR_WEATHER)
        assert len(queue) == 0
        recurring = queue.push(RushHourToggle(2.0), 1, recurring=True)
        queue.pop_due(1)
        scheduler.reschedule(recurring, 1, CLEAR_WEATHER)
        assert queue.peek().event == RushHourToggle(1.0)
