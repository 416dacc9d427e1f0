'''
Event system:
* Events are plain frozen values: EmergencyDispatch, WeatherChange, RushHourToggle
* EventQueue is a heapq priority queue keyed by (due tick, priority, sequence)
* Due events are applied in priority order: emergency, weather, rush hour
* EventScheduler draws the next occurrence of each recurring event class
'''

# Standard Library:
from dataclasses import dataclass, field
from enum import IntEnum
import heapq
import itertools
import logging
import math
import random

# Local:
from trafficsim.traffic.approach import FOUR_WAY, Approach
from trafficsim.simulation.weather import WeatherState, begin_weather, choose_next_kind


logger = logging.getLogger(__name__)


class EventPriority(IntEnum):
    EMERGENCY = 0
    WEATHER = 1
    RUSH_HOUR = 2


@dataclass(frozen=True)
class EmergencyDispatch:
    intersection_id: int
    approach: Approach
    priority_duration: float

    def __post_init__(self) -> None:
        if not isinstance(self.approach, Approach):
            raise TypeError(f'Dispatch approach must be an Approach, got: {self.approach!r}')
        if not self.priority_duration > 0:
            raise ValueError(f'Dispatch priority_duration must be positive, got: {self.priority_duration}')


@dataclass(frozen=True)
class WeatherChange:
    new_state: WeatherState


@dataclass(frozen=True)
class RushHourToggle:
    spawn_multiplier: float


Event = EmergencyDispatch | WeatherChange | RushHourToggle


def priority_of(event: Event) -> EventPriority:
    match event:
        case EmergencyDispatch():
            return EventPriority.EMERGENCY
        case WeatherChange():
            return EventPriority.WEATHER
        case RushHourToggle():
            return EventPriority.RUSH_HOUR
        case _:
            raise TypeError(f'Expected a simulation event, got: {event!r}')


@dataclass(frozen=True, order=True)
class ScheduledEvent:
    due_tick: int
    priority: EventPriority
    seq: int
    event: Event = field(compare=False)
    recurring: bool = field(default=False, compare=False)  # Reschedules its class when applied


class EventQueue:
    def __init__(self) -> None:
        self._heap = []
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, event: Event, due_tick: int, recurring: bool=False) -> ScheduledEvent:
        scheduled = ScheduledEvent(due_tick, priority_of(event), next(self._seq), event, recurring)
        heapq.heappush(self._heap, scheduled)
        return scheduled

    def peek(self) -> ScheduledEvent | None:
        return self._heap[0] if self._heap else None

    def pop_due(self, tick: int) -> list[ScheduledEvent]:
        '''
        Remove every event due at or before tick, ordered by priority then age
        '''
        due = []
        while self._heap and self._heap[0].due_tick <= tick:
            due.append(heapq.heappop(self._heap))
        due.sort(key=lambda scheduled: (scheduled.priority, scheduled.due_tick, scheduled.seq))
        return due

    def pending(self) -> tuple[ScheduledEvent, ...]:
        return tuple(sorted(self._heap))


def geometric_delay(probability: float, rng: random.Random) -> int | None:
    '''
    Ticks until the next success of a per-tick Bernoulli trial, None if it never happens
    '''
    if probability <= 0:
        return None
    if probability >= 1:
        return 1
    draw = rng.random()
    return max(1, math.ceil(math.log(1.0 - draw) / math.log(1.0 - probability)))


class EventScheduler:
    '''
    Draw recurring events from the configured distributions:
    * Emergency dispatch: per-tick probability scaled by the weather emergency factor
    * Weather change: every interval +/- jitter ticks, kind from the Markov table
    * Rush hour: every interval +/- jitter ticks, alternating busy and normal spawning
    '''
    def __init__(self, config, queue: EventQueue, rng: random.Random,
                 intersection_ids: list[int], approaches: tuple[Approach, ...]=FOUR_WAY) -> None:
        self.config = config
        self.queue = queue
        self.rng = rng
        self.intersection_ids = sorted(intersection_ids)
        self.approaches = approaches

    def prime(self, tick: int, weather: WeatherState) -> None:
        '''
        Schedule the first occurrence of every enabled event class
        '''
        self.schedule_emergency(tick, weather)
        if self.config.weather_enabled:
            self.schedule_weather(tick, weather)
        if self.config.rush_hour_enabled:
            self.schedule_rush_hour(tick, RushHourToggle(1.0))

    def reschedule(self, applied: ScheduledEvent, tick: int, weather: WeatherState) -> None:
        '''
        Schedule the next occurrence of the class of a recurring event just applied
        '''
        if not applied.recurring:
            return
        match applied.event:
            case EmergencyDispatch():
                self.schedule_emergency(tick, weather)
            case WeatherChange(new_state=state):
                self.schedule_weather(tick, state)
            case RushHourToggle() as toggle:
                self.schedule_rush_hour(tick, toggle)

    def _jittered(self, interval: int, jitter: int) -> int:
        return max(1, interval + self.rng.randint(-jitter, jitter))

    def schedule_emergency(self, tick: int, weather: WeatherState) -> ScheduledEvent | None:
        if not self.config.emergency_enabled:
            return None
        probability = min(1.0, self.config.emergency_probability * weather.emergency_factor)
        delay = geometric_delay(probability, self.rng)
        if delay is None:
            return None
        event = EmergencyDispatch(self.rng.choice(self.intersection_ids),
                                  self.rng.choice(self.approaches),
                                  self.config.emergency_override_duration)
        return self.queue.push(event, tick + delay, recurring=True)

    def schedule_weather(self, tick: int, current: WeatherState) -> ScheduledEvent:
        delay = self._jittered(self.config.weather_interval_ticks, self.config.weather_jitter_ticks)
        kind = choose_next_kind(current.kind, self.rng)
        target = self.rng.uniform(0.3, 1.0)
        # Spell lasts until the next change is due:
        hold = max(0.0, delay * self.config.tick_interval * self.config.time_scale
                   - self.config.weather_ramp_duration)
        state = begin_weather(kind, target, self.config.weather_ramp_duration, hold, current)
        return self.queue.push(WeatherChange(state), tick + delay, recurring=True)

    def schedule_rush_hour(self, tick: int, current: RushHourToggle) -> ScheduledEvent:
        delay = self._jittered(self.config.rush_hour_interval_ticks, self.config.rush_hour_jitter_ticks)
        multiplier = self.config.rush_hour_multiplier if current.spawn_multiplier == 1.0 else 1.0
        return self.queue.push(RushHourToggle(multiplier), tick + delay, recurring=True)
