'''
Vehicle model:
* Position runs along one approach lane: 0 at the lane entry, the stop line at
  LaneGeometry.stop_line and the exit boundary at LaneGeometry.length
* Speed per tick is the smallest of acceleration, the weather speed limit, the
  stopping caps (stop line, leader) and the time-to-collision cap
* Safe speed for a free distance d in a tick of dt seconds:
  min(sqrt(2 * deceleration * d), d / dt) - never overshoots within the tick
* Following gap widens as visibility drops: min_gap * (2 - visibility)
* Emergency vehicles ignore signals but still follow the vehicle ahead
'''

# Standard Library:
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
import logging
import math

# Local:
from trafficsim.errors import ConfigError
from trafficsim.traffic.approach import Approach
from trafficsim.traffic.lights import LightPhase


logger = logging.getLogger(__name__)

# Global Constants:
CREEP_SPEED = 0.05  # A capped speed below this is treated as a stop
STUCK_WAIT = 30.0  # Seconds stopped after which a vehicle counts as stuck

LaneId = tuple[int, Approach]  # (intersection_id, approach)


class VehicleKind(Enum):
    CAR = 'car'
    TRUCK = 'truck'
    EMERGENCY = 'emergency'

    def __repr__(self) -> str:
        return self.name


class VehicleState(Enum):
    APPROACHING = 'approaching'  # Before the stop line
    STOPPED = 'stopped'
    MOVING = 'moving'  # Past the stop line
    EXITING = 'exiting'  # Reached the exit boundary, removed next tick
    PARKED = 'parked'

    def __repr__(self) -> str:
        return self.name


class VehicleEvent(Enum):
    NONE = 'none'
    STOPPED = 'stopped'
    STARTED = 'started'
    CROSSED = 'crossed'
    EXITED = 'exited'

    def __repr__(self) -> str:
        return self.name


@dataclass(frozen=True)
class KindProfile:
    max_speed: float  # Units per second
    acceleration: float  # Units per second^2
    deceleration: float  # Comfortable braking, units per second^2


KIND_PROFILES = {
    VehicleKind.CAR: KindProfile(max_speed=10.0, acceleration=3.0, deceleration=4.5),
    VehicleKind.TRUCK: KindProfile(max_speed=7.5, acceleration=2.0, deceleration=3.5),
    VehicleKind.EMERGENCY: KindProfile(max_speed=15.0, acceleration=4.0, deceleration=5.0),
}


@dataclass(frozen=True)
class LaneGeometry:
    stop_line: float = 40.0
    length: float = 80.0
    min_gap: float = 5.0
    ttc_threshold: float = 2.0  # Seconds
    yellow_speed_factor: float = 0.7  # Speed cap for vehicles committed on yellow

    def __post_init__(self) -> None:
        if self.length <= 0:
            raise ConfigError(f'Lane length must be positive, got: {self.length}')
        if not 0 < self.stop_line < self.length:
            raise ConfigError(f'Stop line must lie inside the lane (0, {self.length}), '
                              f'got: {self.stop_line}')
        if self.min_gap <= 0:
            raise ConfigError(f'Minimum gap must be positive, got: {self.min_gap}')
        if self.ttc_threshold <= 0:
            raise ConfigError(f'Time-to-collision threshold must be positive, got: {self.ttc_threshold}')
        if not 0 < self.yellow_speed_factor <= 1:
            raise ConfigError(f'Yellow speed factor must be within (0, 1], got: {self.yellow_speed_factor}')

    def following_gap(self, weather) -> float:
        return self.min_gap * (2.0 - weather.visibility_multiplier)

    @property
    def spawn_clearance(self) -> float:
        '''
        Distance the last vehicle in a lane must have covered before another may enter
        '''
        return 2 * self.min_gap


def safe_speed(distance: float, elapsed: float, deceleration: float) -> float:
    '''
    Highest speed that still stops within distance and does not cover more than
    distance during this tick
    '''
    if distance <= 0:
        return 0.0
    return min(math.sqrt(2 * deceleration * distance), distance / elapsed)


class Vehicle:
    '''
    Track vehicle position along its lane, speed and wait time

    The lane is referenced by (intersection_id, approach); the intersection keeps
    the ordered list of vehicle ids.
    '''
    def __init__(self, vehicle_id: int, kind: VehicleKind, lane: LaneId, position: float=0.0,
                 speed: float=0.0, entered_at: float=0.0) -> None:
        profile = KIND_PROFILES[kind]
        self.vehicle_id = vehicle_id
        self.kind = kind
        self.lane = lane
        self.position = position
        self.speed = speed
        self.max_speed = profile.max_speed
        self.acceleration = profile.acceleration
        self.deceleration = profile.deceleration
        self.state = VehicleState.APPROACHING
        self.committed = None  # Yellow decision: None undecided, True go, False stop
        self.wait_time = 0.0
        self.entered_at = entered_at

    def __repr__(self) -> str:
        return f'Vehicle({self.vehicle_id}, {self.kind!r} at {self.position:.1f}, {self.state!r})'

    @property
    def name(self) -> str:
        return f'{self.kind.value.title()}-{self.vehicle_id}'

    @property
    def emergency(self) -> bool:
        return self.kind is VehicleKind.EMERGENCY

    def speed_limit(self, weather) -> float:
        return self.max_speed * weather.speed_multiplier

    def is_stuck(self) -> bool:
        return self.state is VehicleState.STOPPED and self.wait_time > STUCK_WAIT

    def park(self) -> bool:
        '''
        Park the vehicle where it stands; exiting vehicles cannot park
        '''
        if self.state is VehicleState.EXITING:
            return False
        self.state = VehicleState.PARKED
        self.speed = 0.0
        return True

    def advance(self, elapsed: float, phase: LightPhase, weather, leader: 'Vehicle | None'=None,
                geometry: LaneGeometry | None=None) -> VehicleEvent:
        '''
        Advance the vehicle by elapsed seconds

        Args:
            elapsed: Simulated seconds since the previous tick.
            phase: Light phase for this vehicle's approach.
            weather: Current WeatherState.
            leader: Next vehicle ahead in the same lane, already advanced this tick.
            geometry: Lane layout and safety parameters.

        Returns:
            The most significant thing that happened this tick.
        '''
        geometry = geometry or LaneGeometry()
        limit = self.speed_limit(weather)
        if self.state is VehicleState.PARKED:
            return VehicleEvent.NONE
        if self.state is VehicleState.EXITING or elapsed <= 0:
            # Exit side effects happen once; only the weather limit still applies
            self.speed = min(self.speed, limit)
            return VehicleEvent.NONE

        unconstrained = min(self.speed + self.acceleration * elapsed, limit)
        target = unconstrained
        stop_at = math.inf  # Furthest position allowed this tick

        if leader is not None:
            stop_at = leader.position - geometry.following_gap(weather)
            free = stop_at - self.position
            target = min(target, safe_speed(free, elapsed, self.deceleration),
                         max(0.0, leader.speed + free / geometry.ttc_threshold))

        before_line = self.position <= geometry.stop_line
        if phase is LightPhase.GREEN:
            self.committed = None
        elif before_line and not self.emergency:
            to_line = geometry.stop_line - self.position
            if phase is LightPhase.YELLOW and self.committed is None:
                # Decided once per yellow: go if stopping short of the line is impossible
                self.committed = self.speed ** 2 / (2 * self.deceleration) > to_line
                if self.committed:
                    logger.debug(f'{self.name} committed on yellow {to_line:.1f} before the stop line')
            if self.committed:
                target = min(target, geometry.yellow_speed_factor * limit)
            else:
                target = min(target, safe_speed(to_line, elapsed, self.deceleration))
                stop_at = min(stop_at, geometry.stop_line)

        if target < unconstrained and target < CREEP_SPEED:
            target = 0.0
        target = max(0.0, target)

        previous_state = self.state
        previous_position = self.position
        self.speed = target
        self.position = max(previous_position, min(previous_position + target * elapsed, stop_at))

        if self.position >= geometry.length:
            self.state = VehicleState.EXITING
            return VehicleEvent.EXITED
        if target == 0.0:
            self.state = VehicleState.STOPPED
            self.wait_time += elapsed
            return VehicleEvent.STOPPED if previous_state is not VehicleState.STOPPED else VehicleEvent.NONE

        if previous_position <= geometry.stop_line < self.position:
            self.state = VehicleState.MOVING
            self.committed = None
            return VehicleEvent.CROSSED
        self.state = VehicleState.APPROACHING if before_line else VehicleState.MOVING
        return VehicleEvent.STARTED if previous_state is VehicleState.STOPPED else VehicleEvent.NONE


@dataclass(frozen=True)
class CollisionRecord:
    lane: LaneId
    leader_id: int
    follower_id: int
    distance: float
    collision: bool  # True for overlap, False for a near miss


def check_lane_collisions(lane: LaneId, vehicles: Sequence[Vehicle],
                          previous_positions: Mapping[int, float],
                          min_gap: float) -> list[CollisionRecord]:
    '''
    Enforce the minimum gap between consecutive vehicles of one lane

    The trailing vehicle of a pair closer than min_gap is pulled back to
    max(previous position, leader - min_gap) and slowed to the leader's speed.

    Args:
        lane: Lane identifier for the records.
        vehicles: Vehicles of the lane ordered front to back.
        previous_positions: Positions before this tick, keyed by vehicle id.
        min_gap: Minimum safe distance between vehicles.

    Returns:
        One record per pair that violated the gap.
    '''
    records = []
    for leader, follower in zip(vehicles, vehicles[1:]):
        distance = leader.position - follower.position
        if distance >= min_gap:
            continue
        records.append(CollisionRecord(lane, leader.vehicle_id, follower.vehicle_id,
                                       distance, collision=distance <= 0))
        earlier = previous_positions.get(follower.vehicle_id, follower.position)
        follower.position = max(earlier, min(follower.position, leader.position - min_gap))
        follower.speed = min(follower.speed, leader.speed)
        if follower.speed == 0.0 and follower.state in (VehicleState.APPROACHING, VehicleState.MOVING):
            follower.state = VehicleState.STOPPED
    return records
