'''
Traffic light state machine:
* Cycles RED -> GREEN -> YELLOW -> RED, no terminal state
* Transitions when phase_elapsed reaches the duration of the current phase
* An override forces GREEN (favored approach) or RED (conflicting approaches) and
  suspends normal timing; phase_elapsed keeps accumulating while overridden
* Released overrides never go straight back to GREEN
'''

# Standard Library:
from dataclasses import dataclass
from enum import Enum
import logging
import math

# Local:
from trafficsim.errors import ConfigError
from trafficsim.traffic.approach import Approach


logger = logging.getLogger(__name__)


class LightPhase(Enum):
    '''
    Traffic Light Color States
    '''
    RED = 0
    GREEN = 1
    YELLOW = -1

    def __repr__(self) -> str:
        return self.name

    @property
    def next(self) -> 'LightPhase':
        return _NEXT_PHASE[self]


_NEXT_PHASE = {
    LightPhase.RED: LightPhase.GREEN,
    LightPhase.GREEN: LightPhase.YELLOW,
    LightPhase.YELLOW: LightPhase.RED,
}


@dataclass(frozen=True)
class LightDurations:
    red: float = 10.0
    yellow: float = 2.0
    green: float = 8.0

    def __post_init__(self) -> None:
        for name in ('red', 'yellow', 'green'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ConfigError(f'Light {name} duration must be a number, got: {value!r}')
            if not value > 0 or not math.isfinite(value):
                raise ConfigError(f'Light {name} duration must be positive, got: {value}')

    def __getitem__(self, phase: LightPhase) -> float:
        match phase:
            case LightPhase.RED:
                return self.red
            case LightPhase.GREEN:
                return self.green
            case LightPhase.YELLOW:
                return self.yellow
            case _:
                raise KeyError(phase)

    @property
    def cycle(self) -> float:
        return self.red + self.green + self.yellow


class TrafficLight:
    '''
    One light paired with one approach

    Lights do not know about each other - the intersection controller decides when
    a red light is held back because a conflicting approach is not red yet.
    '''
    def __init__(self, light_id: str, approach: Approach, durations: LightDurations,
                 phase: LightPhase=LightPhase.RED, debug: bool=False) -> None:
        """
        Initializes a traffic light object.

        Args:
            light_id (str): Identifier shown in logs and snapshots.
            approach (Approach): The approach this light controls.
            durations (LightDurations): Red, yellow and green durations in seconds.
            phase (LightPhase): Starting phase; phase_elapsed starts at 0.
            debug (bool): A flag to enable or disable transition messages.
        """
        if not isinstance(durations, LightDurations):
            raise ConfigError(f'Expected LightDurations for {light_id}, got: {durations!r}')
        if not isinstance(phase, LightPhase):
            raise ConfigError(f'Expected a LightPhase for {light_id}, got: {phase!r}')
        self.light_id = light_id
        self.approach = approach
        self.durations = durations
        self.debug = debug
        self.phase = phase
        self.phase_elapsed = 0.0
        self.override_phase = None  # Forced phase while an emergency override is active
        self.clearance_factor = 1.0  # Yellow stretch for bad weather, >= 1

    def __repr__(self) -> str:
        return f'TrafficLight({self.light_id}, {self.phase=}, {self.override_phase=})'

    @property
    def overridden(self) -> bool:
        return self.override_phase is not None

    def duration(self) -> float:
        '''
        Duration of the current phase, including weather clearance on yellow
        '''
        if self.phase is LightPhase.YELLOW:
            return self.durations.yellow * self.clearance_factor
        return self.durations[self.phase]

    def due(self) -> bool:
        return not self.overridden and self.phase_elapsed >= self.duration()

    def time_remaining(self) -> float:
        if self.overridden:
            return math.inf
        return max(0.0, self.duration() - self.phase_elapsed)

    def advance(self, elapsed: float, hold: bool=False) -> bool:
        '''
        Advance the light by elapsed seconds

        Args:
            elapsed: Simulated seconds since the previous tick.
            hold: Keep a due RED light red (a conflicting approach is not red yet).

        Returns:
            True if the phase changed this tick.
        '''
        self.phase_elapsed += elapsed
        if self.overridden or self.phase_elapsed < self.duration():
            return False
        if hold and self.phase is LightPhase.RED:
            return False

        previous = self.phase
        self.phase = self.phase.next
        self.phase_elapsed = 0.0
        if self.debug:
            logger.debug(f'Traffic Light {self.light_id} Transition ({previous=}, {self.phase=})')
        return True

    def force(self, phase: LightPhase) -> bool:
        '''
        Set an override phase, returning True if the visible phase changed
        '''
        self.override_phase = phase
        if self.phase is phase:
            return False
        self.phase = phase
        self.phase_elapsed = 0.0
        return True

    def release(self) -> bool:
        '''
        Clear the override and resume normal cycling

        A light forced GREEN resumes at YELLOW; a light forced RED starts a fresh red
        interval. Returns True if the visible phase changed.
        '''
        forced, self.override_phase = self.override_phase, None
        if forced is None:
            return False
        self.phase_elapsed = 0.0
        if forced is LightPhase.GREEN:
            self.phase = LightPhase.YELLOW
            return True
        self.phase = LightPhase.RED
        return False
