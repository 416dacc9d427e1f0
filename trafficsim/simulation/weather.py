'''
Weather state:
* Immutable value swapped whole by the engine, never mutated in place
* Intensity ramps linearly toward a target, then holds until the next change
* Multipliers scale from 1.0 (no effect) at intensity 0 to the per-kind base
  value at intensity 1; clear weather never slows traffic
'''

# Standard Library:
from dataclasses import dataclass, replace
from enum import Enum
import math
import random


class WeatherKind(Enum):
    CLEAR = 'clear'
    RAIN = 'rain'
    SNOW = 'snow'
    FOG = 'fog'
    STORM = 'storm'

    def __repr__(self) -> str:
        return self.name


# Multipliers at full intensity:
BASE_SPEED = {
    WeatherKind.CLEAR: 1.0,
    WeatherKind.RAIN: 0.85,
    WeatherKind.SNOW: 0.7,
    WeatherKind.FOG: 0.85,
    WeatherKind.STORM: 0.6,
}
BASE_VISIBILITY = {
    WeatherKind.CLEAR: 1.0,
    WeatherKind.RAIN: 0.8,
    WeatherKind.SNOW: 0.6,
    WeatherKind.FOG: 0.4,
    WeatherKind.STORM: 0.3,
}
# Bad weather makes emergency dispatches more frequent:
EMERGENCY_FACTOR = {
    WeatherKind.CLEAR: 1.0,
    WeatherKind.RAIN: 1.2,
    WeatherKind.SNOW: 1.8,
    WeatherKind.FOG: 1.3,
    WeatherKind.STORM: 2.0,
}
# Markov chain for the next weather kind (weights sum to 1):
TRANSITIONS = {
    WeatherKind.CLEAR: ((WeatherKind.CLEAR, 0.45), (WeatherKind.RAIN, 0.3),
                        (WeatherKind.FOG, 0.15), (WeatherKind.SNOW, 0.1)),
    WeatherKind.RAIN: ((WeatherKind.CLEAR, 0.4), (WeatherKind.RAIN, 0.5),
                       (WeatherKind.STORM, 0.1)),
    WeatherKind.SNOW: ((WeatherKind.CLEAR, 0.4), (WeatherKind.SNOW, 0.4),
                       (WeatherKind.FOG, 0.2)),
    WeatherKind.FOG: ((WeatherKind.CLEAR, 0.6), (WeatherKind.FOG, 0.2),
                      (WeatherKind.RAIN, 0.2)),
    WeatherKind.STORM: ((WeatherKind.RAIN, 0.7), (WeatherKind.CLEAR, 0.2),
                        (WeatherKind.STORM, 0.1)),
}


def _scaled(base: float, intensity: float) -> float:
    return 1.0 - (1.0 - base) * intensity


@dataclass(frozen=True)
class WeatherState:
    kind: WeatherKind = WeatherKind.CLEAR
    intensity: float = 0.0
    target_intensity: float = 0.0
    ramp_rate: float = 0.0  # Intensity change per second
    remaining_duration: float = math.inf

    def __post_init__(self) -> None:
        for name in ('intensity', 'target_intensity'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f'Weather {name} must be within [0, 1], got: {value}')
        if self.ramp_rate < 0:
            raise ValueError(f'Weather ramp_rate must not be negative, got: {self.ramp_rate}')

    @property
    def speed_multiplier(self) -> float:
        return _scaled(BASE_SPEED[self.kind], self.intensity)

    @property
    def visibility_multiplier(self) -> float:
        return _scaled(BASE_VISIBILITY[self.kind], self.intensity)

    @property
    def emergency_factor(self) -> float:
        return 1.0 + (EMERGENCY_FACTOR[self.kind] - 1.0) * self.intensity

    @property
    def ramping(self) -> bool:
        return self.intensity != self.target_intensity

    def describe(self) -> str:
        if self.kind is WeatherKind.CLEAR:
            return 'Clear'
        if self.intensity < 0.3:
            level = 'Light'
        elif self.intensity < 0.7:
            level = 'Moderate'
        else:
            level = 'Heavy'
        return f'{level} {self.kind.value.title()}'


CLEAR_WEATHER = WeatherState()


def next_weather(current: WeatherState, elapsed: float) -> WeatherState:
    '''
    Advance weather by elapsed seconds: ramp intensity toward the target and count
    down the remaining duration
    '''
    if elapsed <= 0:
        return current
    intensity = current.intensity
    if current.ramping:
        if current.ramp_rate <= 0:
            intensity = current.target_intensity
        elif intensity < current.target_intensity:
            intensity = min(current.target_intensity, intensity + current.ramp_rate * elapsed)
        else:
            intensity = max(current.target_intensity, intensity - current.ramp_rate * elapsed)
    remaining = max(0.0, current.remaining_duration - elapsed)
    return replace(current, intensity=intensity, remaining_duration=remaining)


def begin_weather(kind: WeatherKind, target_intensity: float, ramp_duration: float,
                  hold_duration: float=math.inf, current: WeatherState | None=None) -> WeatherState:
    '''
    Create the state for a new weather spell

    Args:
        kind: Weather kind of the new spell.
        target_intensity: Intensity reached at the end of the ramp (ignored for clear).
        ramp_duration: Seconds to reach the target; 0 jumps straight to it.
        hold_duration: Seconds the spell lasts after the ramp.
        current: Weather the spell follows; the same kind continues from its target
            intensity, a new kind starts from zero.
    '''
    if kind is WeatherKind.CLEAR:
        return replace(CLEAR_WEATHER, remaining_duration=ramp_duration + hold_duration)
    start = current.target_intensity if current is not None and current.kind is kind else 0.0
    if ramp_duration > 0:
        intensity, rate = start, abs(target_intensity - start) / ramp_duration
    else:
        intensity, rate = target_intensity, 0.0
    return WeatherState(kind=kind, intensity=intensity, target_intensity=target_intensity,
                        ramp_rate=rate, remaining_duration=ramp_duration + hold_duration)


def choose_next_kind(current: WeatherKind, rng: random.Random) -> WeatherKind:
    kinds, weights = zip(*TRANSITIONS[current])
    return rng.choices(kinds, weights=weights)[0]
