'''
Intersection controller:
* Owns one light per approach and a conflict table (networkx graph, an edge
  joins two approaches that must never be green together)
* Holds a red light back while any conflicting approach is not red
* Grants emergency overrides first-come, denies requests that conflict with an
  active override, extends repeated requests on the same approach
* Tracks lane occupancy against road capacity and the waiting queue per approach
'''

# Standard Library:
from dataclasses import dataclass
from itertools import combinations
import logging

# Third-Party:
import networkx

# Local:
from trafficsim.errors import CapacityExceeded, ConfigError, OverrideDenied
from trafficsim.traffic.approach import FOUR_WAY, Approach
from trafficsim.traffic.lights import LightDurations, LightPhase, TrafficLight


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LightEvent:
    intersection_id: int
    approach: Approach
    previous: LightPhase
    phase: LightPhase
    cause: str  # timer | override | release


def build_conflict_graph(approaches: tuple[Approach, ...]=FOUR_WAY,
                         concurrent_opposites: bool=True) -> networkx.Graph:
    '''
    Build the conflict table for a four-way intersection

    Args:
        approaches: Approaches present at the intersection.
        concurrent_opposites: Let opposite approaches (N/S, E/W) share green.

    Returns:
        A graph with one node per approach and an edge per conflicting pair.
    '''
    G = networkx.Graph()
    G.add_nodes_from(approaches)
    for first, second in combinations(approaches, 2):
        if concurrent_opposites and first.opposite is second:
            continue
        G.add_edge(first, second)
    return G


class Intersection:
    def __init__(self, intersection_id: int, position: tuple[int, int]=(0, 0),
                 durations: LightDurations | None=None, road_capacity: int=12,
                 approaches: tuple[Approach, ...]=FOUR_WAY, concurrent_opposites: bool=True,
                 conflicts: networkx.Graph | None=None, debug: bool=False) -> None:
        """
        Initializes an intersection controller.

        Args:
            intersection_id (int): Identifier, also the node key in the road network.
            position (tuple[int, int]): (row, column) of the intersection in the grid.
            durations (LightDurations): Timing shared by all lights of this intersection.
            road_capacity (int): Maximum vehicles per approach lane.
            approaches (tuple[Approach, ...]): Approaches in advance/report order.
            concurrent_opposites (bool): Conflict table choice when conflicts is not given.
            conflicts (networkx.Graph): Explicit conflict table.
            debug (bool): A flag to enable or disable light transition messages.
        """
        if road_capacity <= 0:
            raise ConfigError(f'road_capacity must be positive, got: {road_capacity}')
        if not approaches:
            raise ConfigError(f'Intersection {intersection_id} needs at least one approach')
        self.intersection_id = intersection_id
        self.position = position
        self.road_capacity = road_capacity
        self.conflicts = (conflicts if conflicts is not None
                          else build_conflict_graph(approaches, concurrent_opposites))
        missing = set(approaches) - set(self.conflicts.nodes)
        if missing:
            raise ConfigError(f'Conflict table for intersection {intersection_id} '
                              f'missing approaches: {sorted(a.value for a in missing)}')
        durations = durations or LightDurations()

        # First approach starts green along with every approach it may share green with:
        self.lights = {}
        for approach in approaches:
            green = all(self.lights[other].phase is LightPhase.RED
                        for other in self.conflicts.neighbors(approach) if other in self.lights)
            self.lights[approach] = TrafficLight(
                f'{intersection_id}-{approach.value}', approach, durations,
                phase=LightPhase.GREEN if green else LightPhase.RED, debug=debug
            )
        self.lanes = {approach: [] for approach in approaches}  # Vehicle ids, front to back
        self.queues = {approach: 0 for approach in approaches}  # Stopped vehicles per approach
        self.overrides = {}  # Approach -> remaining override seconds
        self._pending = []  # Light changes from overrides since the last advance

    def __repr__(self) -> str:
        return f'Intersection({self.intersection_id} at {self.position}, {self.overrides=})'

    @property
    def approaches(self) -> tuple[Approach, ...]:
        return tuple(self.lights)

    def phase(self, approach: Approach) -> LightPhase:
        return self.lights[approach].phase

    def conflicting(self, first: Approach, second: Approach) -> bool:
        return self.conflicts.has_edge(first, second)

    def conflicting_greens(self) -> list[tuple[Approach, Approach]]:
        '''
        Pairs of conflicting approaches currently both green (always empty)
        '''
        return [(first, second) for first, second in self.conflicts.edges
                if self.lights[first].phase is LightPhase.GREEN
                and self.lights[second].phase is LightPhase.GREEN]

    def advance(self, elapsed: float, weather) -> list[LightEvent]:
        '''
        Advance every light by elapsed seconds, respecting the conflict table

        Args:
            elapsed: Simulated seconds since the previous tick.
            weather: Current WeatherState; slower traffic stretches yellow clearance.

        Returns:
            Light phase changes this tick, including override grants and releases
            since the previous call.
        '''
        clearance = 1 / weather.speed_multiplier
        events, self._pending = self._pending, []
        for approach, light in self.lights.items():
            light.clearance_factor = clearance
            blocked = any(self.lights[other].phase is not LightPhase.RED
                          for other in self.conflicts.neighbors(approach))
            previous = light.phase
            if light.advance(elapsed, hold=blocked):
                events.append(LightEvent(self.intersection_id, approach, previous, light.phase, 'timer'))
        return events

    def request_emergency_override(self, approach: Approach, duration: float) -> None:
        '''
        Force approach green and every conflicting approach red for duration seconds

        Raises:
            OverrideDenied: A conflicting approach already holds an override.
        '''
        if approach not in self.lights:
            raise KeyError(f'Intersection {self.intersection_id} has no approach {approach!r}')
        if duration <= 0:
            raise ValueError(f'Override duration must be positive, got: {duration}')
        for holder in self.overrides:
            if self.conflicting(approach, holder):
                logger.info(f'Intersection {self.intersection_id}: override for {approach!r} denied, '
                            f'{holder!r} holds {self.overrides[holder]:.1f}s')
                raise OverrideDenied(self.intersection_id, approach, holder)

        remaining = self.overrides.get(approach, 0.0)
        self.overrides[approach] = max(remaining, duration)
        if remaining:
            logger.info(f'Intersection {self.intersection_id}: override for {approach!r} extended '
                        f'to {self.overrides[approach]:.1f}s')
        else:
            logger.info(f'Intersection {self.intersection_id}: override granted to {approach!r} '
                        f'for {duration:.1f}s')
        self._apply_overrides('override')

    def release_expired_overrides(self, elapsed: float) -> list[Approach]:
        '''
        Count down active overrides and clear those that reached zero

        Returns:
            Approaches whose override expired this call.
        '''
        expired = []
        for approach in list(self.overrides):
            self.overrides[approach] -= elapsed
            if self.overrides[approach] <= 0:
                del self.overrides[approach]
                expired.append(approach)
        if expired:
            logger.info(f'Intersection {self.intersection_id}: override released for {expired!r}')
            self._apply_overrides('release')
        return expired

    def _apply_overrides(self, cause: str) -> None:
        '''
        Re-derive forced phases from the active overrides (hard cut, no amber)
        '''
        for approach, light in self.lights.items():
            if approach in self.overrides:
                wanted = LightPhase.GREEN
            elif any(self.conflicting(approach, holder) for holder in self.overrides):
                wanted = LightPhase.RED
            else:
                wanted = None

            previous = light.phase
            if wanted is None:
                changed = light.release()
            elif light.override_phase is not wanted or light.phase is not wanted:
                changed = light.force(wanted)
            else:
                changed = False
            if changed:
                self._pending.append(LightEvent(self.intersection_id, approach, previous,
                                                light.phase, 'release' if wanted is None else cause))

    def capacity_available(self, approach: Approach) -> bool:
        return len(self.lanes[approach]) < self.road_capacity

    def admit(self, approach: Approach, vehicle_id: int) -> None:
        '''
        Register a vehicle at the back of the approach lane
        '''
        if not self.capacity_available(approach):
            raise CapacityExceeded(f'Approach {approach!r} at intersection {self.intersection_id} '
                                   f'is full ({self.road_capacity} vehicles)',
                                   self.intersection_id, approach)
        self.lanes[approach].append(vehicle_id)

    def depart(self, approach: Approach, vehicle_id: int) -> None:
        if vehicle_id in self.lanes[approach]:
            self.lanes[approach].remove(vehicle_id)

    def update_queue(self, approach: Approach, waiting: int) -> None:
        self.queues[approach] = waiting

    def queue_length(self, approach: Approach) -> int:
        return self.queues[approach]

    def efficiency_score(self) -> float:
        '''
        100 less two points per waiting vehicle, floored at 0; +10 while an emergency
        override is active
        '''
        score = max(0.0, 100.0 - 2.0 * sum(self.queues.values()))
        if self.overrides:
            score += 10.0
        return score
