'''
Immutable per-tick snapshot handed to rendering and statistics consumers

Everything is a frozen dataclass built from tuples, so a snapshot can cross a
thread boundary and be kept after the next tick without copying.
'''

# Standard Library:
from collections import Counter
from dataclasses import dataclass, fields
from enum import Enum

# Local:
from trafficsim.traffic.approach import Approach
from trafficsim.traffic.lights import LightPhase
from trafficsim.traffic.vehicles import VehicleKind, VehicleState
from trafficsim.simulation.weather import WeatherState


@dataclass(frozen=True)
class TickStats:
    '''
    Counts for a single tick
    '''
    spawned: int = 0
    exited: int = 0
    handoffs: int = 0
    emergency_dispatched: int = 0
    overrides_granted: int = 0
    overrides_denied: int = 0
    light_changes: int = 0
    collisions: int = 0
    near_misses: int = 0
    capacity_rejections: int = 0
    weather_changes: int = 0
    rush_hour_toggles: int = 0

    @classmethod
    def from_counter(cls, counter: Counter) -> 'TickStats':
        names = {item.name for item in fields(cls)}
        unknown = set(counter) - names
        if unknown:
            raise KeyError(f'Unknown tick statistics: {sorted(unknown)}')
        return cls(**counter)

    def as_dict(self) -> dict[str, int]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


class CongestionSeverity(Enum):
    LIGHT = 'light'  # 3-5 vehicles waiting on one approach
    MODERATE = 'moderate'  # 6-10
    HEAVY = 'heavy'  # 11-20
    SEVERE = 'severe'  # more than 20

    def __repr__(self) -> str:
        return self.name


@dataclass(frozen=True)
class IntersectionStats:
    '''
    Cumulative figures for one intersection
    '''
    intersection_id: int
    vehicles_processed: int = 0  # Crossed the stop line
    emergency_activations: int = 0  # Overrides granted
    light_cycles: int = 0  # Timer-driven starts of a green phase, per light
    peak_queue: int = 0  # Longest queue seen on any single approach
    efficiency: float = 100.0
    average_efficiency: float = 100.0


@dataclass(frozen=True)
class CongestionPoint:
    intersection_id: int
    approach: Approach
    queue_length: int
    severity: CongestionSeverity


@dataclass(frozen=True)
class StatisticsSummary:
    '''
    Rolling window and cumulative figures
    '''
    total_spawned: int = 0
    total_exited: int = 0
    total_emergency: int = 0
    total_collisions: int = 0
    total_near_misses: int = 0
    total_overrides_denied: int = 0
    vehicles_waited: int = 0
    average_wait: float | None = None
    max_wait: float | None = None
    average_travel: float | None = None
    max_travel: float | None = None
    min_travel: float | None = None
    throughput_per_minute: float = 0.0
    window_ticks: int = 0
    overall_efficiency: float | None = None
    intersections: tuple[IntersectionStats, ...] = ()
    congestion: tuple[CongestionPoint, ...] = ()
    vehicles_by_kind: tuple[tuple[VehicleKind, int], ...] = ()
    vehicles_by_state: tuple[tuple[VehicleState, int], ...] = ()
    stuck_vehicles: int = 0

    def intersection(self, intersection_id: int) -> IntersectionStats:
        for stats in self.intersections:
            if stats.intersection_id == intersection_id:
                return stats
        raise KeyError(intersection_id)


@dataclass(frozen=True)
class LightView:
    intersection_id: int
    approach: Approach
    phase: LightPhase
    phase_elapsed: float
    time_remaining: float
    overridden: bool


@dataclass(frozen=True)
class IntersectionView:
    intersection_id: int
    position: tuple[int, int]
    lights: tuple[LightView, ...]
    queue_lengths: tuple[tuple[Approach, int], ...]
    overrides: tuple[tuple[Approach, float], ...]

    def light(self, approach: Approach) -> LightView:
        for view in self.lights:
            if view.approach is approach:
                return view
        raise KeyError(approach)


@dataclass(frozen=True)
class VehicleView:
    vehicle_id: int
    kind: VehicleKind
    intersection_id: int
    approach: Approach
    position: float
    speed: float
    state: VehicleState


@dataclass(frozen=True)
class SimulationSnapshot:
    tick: int
    sim_time: float
    intersections: tuple[IntersectionView, ...]
    vehicles: tuple[VehicleView, ...]
    roads: tuple[tuple[int, int, float], ...]
    weather: WeatherState
    spawn_multiplier: float
    stats: TickStats
    summary: StatisticsSummary

    @property
    def rush_hour(self) -> bool:
        return self.spawn_multiplier > 1.0

    def intersection(self, intersection_id: int) -> IntersectionView:
        for view in self.intersections:
            if view.intersection_id == intersection_id:
                return view
        raise KeyError(intersection_id)

    def lane(self, intersection_id: int, approach: Approach) -> tuple[VehicleView, ...]:
        return tuple(view for view in self.vehicles
                     if view.intersection_id == intersection_id and view.approach is approach)
