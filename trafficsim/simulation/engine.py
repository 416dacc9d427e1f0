'''
Simulation engine - advances the whole world by one tick

Order inside step():
* queued commands (inject event, park, despawn)
* removal (or hand-off to the next intersection) of vehicles that exited last tick
* weather
* due events in priority order, then their next occurrences are scheduled
* spawning
* expired overrides, then lights
* vehicles, front to back in every lane
* collision checks
* invariant checks - a violation halts the engine before any snapshot is emitted
* snapshot

The engine owns all mutable state, performs no I/O besides logging and never
blocks. step() is not reentrant.
'''

# Standard Library:
from collections import Counter, defaultdict, deque
import itertools
import logging
import random

# Local:
from trafficsim.config import SimulationConfig
from trafficsim.errors import CapacityExceeded, OverrideDenied, SimulationError
from trafficsim.traffic.approach import Approach
from trafficsim.traffic.intersection import Intersection
from trafficsim.traffic.lights import LightPhase
from trafficsim.traffic.network import downstream, get_layout, intersections_of, setup_network
from trafficsim.traffic.vehicles import (Vehicle, VehicleEvent, VehicleKind, VehicleState,
                                        check_lane_collisions)
from trafficsim.simulation.commands import (DespawnVehicle, EngineCommand, InjectEvent,
                                            ParkVehicle)
from trafficsim.simulation.events import (EmergencyDispatch, EventQueue, EventScheduler,
                                          RushHourToggle, ScheduledEvent, WeatherChange)
from trafficsim.simulation.snapshot import (IntersectionView, LightView, SimulationSnapshot,
                                            TickStats, VehicleView)
from trafficsim.simulation.statistics import StatisticsCollector
from trafficsim.simulation.weather import CLEAR_WEATHER, next_weather


logger = logging.getLogger(__name__)

# Global Constants:
TOLERANCE = 1e-9  # Float slack for invariant checks
ENTRY_SPEED = 0.5  # Fraction of the speed limit vehicles enter with


class SimulationEngine:
    def __init__(self, config: SimulationConfig | None=None) -> None:
        """
        Initializes the engine.

        Args:
            config (SimulationConfig): Validated here; ConfigError is raised before any
                state is created.
        """
        self.config = (config or SimulationConfig()).validate()
        self.rng = random.Random(self.config.random_seed)
        self.geometry = self.config.lane_geometry()
        self.network = setup_network(
            get_layout(self.config.layout), durations=self.config.light_durations(),
            road_capacity=self.config.road_capacity,
            concurrent_opposites=self.config.concurrent_opposites,
            road_length=self.config.lane_length, debug=self.config.debug
        )
        self.intersections = intersections_of(self.network)
        self.vehicles = {}  # Vehicle arena, lanes refer to vehicles by id
        self.weather = CLEAR_WEATHER
        self.spawn_multiplier = 1.0
        self.events = EventQueue()
        self.scheduler = EventScheduler(self.config, self.events, self.rng, list(self.intersections))
        self.statistics = StatisticsCollector(self.config.statistics_window)
        self.tick = 0
        self.sim_time = 0.0
        self.halted = False
        self.closed = False
        self._stepping = False
        self._commands = deque()
        self._exiting = []  # Vehicles that reached the exit boundary last tick
        self._stats = Counter()
        self._intersection_counts = defaultdict(Counter)  # Per-intersection counts this tick
        self._vehicle_ids = itertools.count(1)
        self.scheduler.prime(self.tick, self.weather)
        logger.info(f'Engine ready: {len(self.intersections)} intersection(s), '
                    f'layout={self.config.layout}, seed={self.config.random_seed}')

    def __repr__(self) -> str:
        return f'SimulationEngine(tick={self.tick}, vehicles={len(self.vehicles)}, {self.weather.kind!r})'

    def submit(self, command: EngineCommand) -> None:
        '''
        Queue a command for the start of the next tick
        '''
        if not isinstance(command, EngineCommand):
            raise TypeError(f'Expected InjectEvent, ParkVehicle or DespawnVehicle, got: {command!r}')
        self._commands.append(command)

    def shutdown(self) -> None:
        '''
        Refuse further ticks; state and the last snapshot stay available to the caller
        '''
        self.closed = True
        logger.info(f'{self.sim_time:05.1f}s: Engine shut down after {self.tick} ticks')

    def step(self, elapsed: float) -> SimulationSnapshot:
        '''
        Advance the simulation by one tick of elapsed (already scaled and clamped) seconds

        Raises:
            SimulationError: Reentrant call, stepping a halted or shut down engine, an
                invariant violation or any other error raised mid-tick (the engine halts
                and no snapshot is produced).
        '''
        if self._stepping:
            raise SimulationError('step() called while a tick is in progress')
        if self.halted:
            raise SimulationError('Engine halted after a fatal error')
        if self.closed:
            raise SimulationError('Engine has been shut down')
        if elapsed < 0:
            raise ValueError(f'Elapsed time must not be negative, got: {elapsed}')

        self._stepping = True
        try:
            self.tick += 1
            self.sim_time += elapsed
            self._apply_commands()
            self._remove_exited()
            if self.config.weather_enabled:
                self.weather = next_weather(self.weather, elapsed)
            self._drain_events()
            self._spawn_vehicles(elapsed)
            self._advance_lights(elapsed)
            previous_positions = {vid: vehicle.position for vid, vehicle in self.vehicles.items()}
            self._advance_vehicles(elapsed)
            self._check_collisions(previous_positions)
            self._verify_invariants(previous_positions)
            return self._build_snapshot(elapsed)
        except SimulationError as exc:
            self.halted = True
            logger.error(f'{self.sim_time:05.1f}s: Simulation halted at tick {self.tick}: {exc}')
            raise
        except Exception as exc:
            # A half-applied tick cannot be trusted either
            self.halted = True
            logger.exception(f'{self.sim_time:05.1f}s: Simulation halted at tick {self.tick}: {exc!r}')
            raise SimulationError(f'Unexpected error at tick {self.tick}: {exc!r}') from exc
        finally:
            self._stepping = False

    # Commands and events:

    def _apply_commands(self) -> None:
        while self._commands:
            match self._commands.popleft():
                case InjectEvent(event=event, delay=delay):
                    self.events.push(event, self.tick + max(0, delay))
                    logger.info(f'{self.sim_time:05.1f}s: Injected {event!r}')
                case ParkVehicle(vehicle_id=vehicle_id):
                    vehicle = self.vehicles.get(vehicle_id)
                    if vehicle is not None and vehicle.park():
                        logger.info(f'{self.sim_time:05.1f}s: {vehicle.name} parked at {vehicle.position:.1f}')
                    else:
                        logger.warning(f'{self.sim_time:05.1f}s: Cannot park vehicle {vehicle_id}')
                case DespawnVehicle(vehicle_id=vehicle_id):
                    if not self._despawn(vehicle_id):
                        logger.warning(f'{self.sim_time:05.1f}s: Cannot despawn unknown vehicle {vehicle_id}')

    def _drain_events(self) -> None:
        for scheduled in self.events.pop_due(self.tick):
            self._apply_event(scheduled)
            self.scheduler.reschedule(scheduled, self.tick, self.weather)

    def _apply_event(self, scheduled: ScheduledEvent) -> None:
        match scheduled.event:
            case EmergencyDispatch() as dispatch:
                self._dispatch_emergency(dispatch)
            case WeatherChange(new_state=state):
                if not self.config.weather_enabled:
                    logger.debug(f'{self.sim_time:05.1f}s: Weather disabled, ignoring {state.kind!r}')
                    return
                # Single reference swap - vehicles only ever see a complete state
                self.weather = state
                self._stats['weather_changes'] += 1
                logger.info(f'{self.sim_time:05.1f}s: Weather changes to {state.kind!r} '
                            f'(target intensity {state.target_intensity:.2f})')
            case RushHourToggle(spawn_multiplier=multiplier):
                self.spawn_multiplier = multiplier
                self._stats['rush_hour_toggles'] += 1
                logger.info(f'{self.sim_time:05.1f}s: Rush hour '
                            f'{"starts" if multiplier > 1.0 else "ends"} ({multiplier=})')

    def _dispatch_emergency(self, dispatch: EmergencyDispatch) -> None:
        '''
        Spawn an emergency vehicle behind a granted override; retry next tick otherwise
        '''
        intersection = self.intersections.get(dispatch.intersection_id)
        if intersection is None or dispatch.approach not in intersection.lights:
            logger.warning(f'{self.sim_time:05.1f}s: Dropping dispatch to unknown lane {dispatch!r}')
            return
        if (len(self.vehicles) >= self.config.max_vehicles
                or not self._entry_clear(intersection, dispatch.approach)):
            self._stats['capacity_rejections'] += 1
            logger.debug(f'{self.sim_time:05.1f}s: No room for emergency vehicle at '
                         f'{dispatch.intersection_id}-{dispatch.approach.value}, retrying')
            self.events.push(dispatch, self.tick + 1)
            return
        try:
            intersection.request_emergency_override(dispatch.approach, dispatch.priority_duration)
        except OverrideDenied:
            self._stats['overrides_denied'] += 1
            self.events.push(dispatch, self.tick + 1)
            return

        self._stats['overrides_granted'] += 1
        self._intersection_counts[dispatch.intersection_id]['emergency_activations'] += 1
        vehicle = self.spawn_vehicle(dispatch.intersection_id, dispatch.approach, VehicleKind.EMERGENCY)
        self._stats['emergency_dispatched'] += 1
        logger.info(f'{self.sim_time:05.1f}s: {vehicle.name} dispatched from '
                    f'{dispatch.approach!r} at intersection {dispatch.intersection_id}')

    # Vehicles entering and leaving:

    def _entry_clear(self, intersection: Intersection, approach: Approach) -> bool:
        if not intersection.capacity_available(approach):
            return False
        lane = intersection.lanes[approach]
        return not lane or self.vehicles[lane[-1]].position >= self.geometry.spawn_clearance

    def spawn_vehicle(self, intersection_id: int, approach: Approach, kind: VehicleKind) -> Vehicle:
        '''
        Create a vehicle at the entry of an approach lane

        Raises:
            CapacityExceeded: Vehicle limit reached, lane full or entry still occupied.
        '''
        intersection = self.intersections[intersection_id]
        if len(self.vehicles) >= self.config.max_vehicles:
            raise CapacityExceeded(f'Vehicle limit of {self.config.max_vehicles} reached',
                                   intersection_id, approach)
        lane = intersection.lanes[approach]
        if lane and self.vehicles[lane[-1]].position < self.geometry.spawn_clearance:
            raise CapacityExceeded(f'Entry of {approach!r} at intersection {intersection_id} is blocked',
                                   intersection_id, approach)
        vehicle_id = next(self._vehicle_ids)
        intersection.admit(approach, vehicle_id)
        vehicle = Vehicle(vehicle_id, kind, (intersection_id, approach), entered_at=self.sim_time)
        vehicle.speed = ENTRY_SPEED * vehicle.speed_limit(self.weather)
        self.vehicles[vehicle_id] = vehicle
        self._stats['spawned'] += 1
        logger.debug(f'{self.sim_time:05.1f}s: {vehicle.name} arrives from {approach!r} '
                     f'at intersection {intersection_id}')
        return vehicle

    def _spawn_vehicles(self, elapsed: float) -> None:
        for intersection_id, intersection in self.intersections.items():
            approaches = intersection.approaches
            probability = min(1.0, self.config.spawn_rate * self.spawn_multiplier * elapsed
                              / len(approaches))
            for approach in approaches:
                if self.rng.random() >= probability:
                    continue
                truck = self.rng.random() < self.config.truck_probability
                try:
                    self.spawn_vehicle(intersection_id, approach,
                                       VehicleKind.TRUCK if truck else VehicleKind.CAR)
                except CapacityExceeded as exc:
                    self._stats['capacity_rejections'] += 1
                    logger.debug(f'{self.sim_time:05.1f}s: Spawn rejected: {exc}')

    def _despawn(self, vehicle_id: int) -> bool:
        vehicle = self.vehicles.pop(vehicle_id, None)
        if vehicle is None:
            return False
        intersection_id, approach = vehicle.lane
        self.intersections[intersection_id].depart(approach, vehicle_id)
        logger.info(f'{self.sim_time:05.1f}s: {vehicle.name} despawned')
        return True

    def _remove_exited(self) -> None:
        '''
        Remove vehicles that spent one tick EXITING, or hand them to the next intersection
        '''
        exiting, self._exiting = self._exiting, []
        for vehicle_id in exiting:
            vehicle = self.vehicles.get(vehicle_id)
            if vehicle is None or vehicle.state is not VehicleState.EXITING:
                continue
            intersection_id, approach = vehicle.lane
            self.intersections[intersection_id].depart(approach, vehicle_id)

            next_id = downstream(self.network, intersection_id, approach)
            if next_id is not None and self._entry_clear(self.intersections[next_id], approach):
                self.intersections[next_id].admit(approach, vehicle_id)
                vehicle.lane = (next_id, approach)
                vehicle.position = 0.0
                vehicle.state = VehicleState.APPROACHING
                vehicle.committed = None
                self._stats['handoffs'] += 1
                logger.debug(f'{self.sim_time:05.1f}s: {vehicle.name} continues from intersection '
                             f'{intersection_id} to {next_id}')
                continue

            del self.vehicles[vehicle_id]
            travel_time = self.sim_time - vehicle.entered_at
            self.statistics.record_exit(vehicle.wait_time, travel_time)
            self._stats['exited'] += 1
            logger.debug(f'{self.sim_time:05.1f}s: {vehicle.name} exits simulation after '
                         f'{travel_time:.1f}s (waited {vehicle.wait_time:.1f}s)')

    # Lights, vehicles, collisions:

    def _advance_lights(self, elapsed: float) -> None:
        for intersection in self.intersections.values():
            intersection.release_expired_overrides(elapsed)
            changes = intersection.advance(elapsed, self.weather)
            self._stats['light_changes'] += len(changes)
            for change in changes:
                if change.cause == 'timer' and change.phase is LightPhase.GREEN:
                    self._intersection_counts[change.intersection_id]['light_cycles'] += 1
                logger.debug(f'{self.sim_time:05.1f}s: Light {change.intersection_id}-'
                             f'{change.approach.value} {change.previous!r} -> {change.phase!r} ({change.cause})')

    def _lane_vehicles(self, intersection: Intersection, approach: Approach) -> list[Vehicle]:
        return [self.vehicles[vehicle_id] for vehicle_id in intersection.lanes[approach]]

    def _advance_vehicles(self, elapsed: float) -> None:
        for intersection in self.intersections.values():
            for approach in intersection.approaches:
                phase = intersection.phase(approach)
                leader = None
                for vehicle in self._lane_vehicles(intersection, approach):
                    event = vehicle.advance(elapsed, phase, self.weather, leader, self.geometry)
                    match event:
                        case VehicleEvent.EXITED:
                            self._exiting.append(vehicle.vehicle_id)
                        case VehicleEvent.CROSSED:
                            self._intersection_counts[intersection.intersection_id]['vehicles_processed'] += 1
                            logger.debug(f'{self.sim_time:05.1f}s: {vehicle.name} crosses intersection '
                                         f'{intersection.intersection_id} on {phase!r}')
                        case VehicleEvent.STOPPED:
                            logger.debug(f'{self.sim_time:05.1f}s: {vehicle.name} waits at '
                                         f'{vehicle.position:.1f} on {phase!r}')
                    leader = vehicle

    def _check_collisions(self, previous_positions: dict[int, float]) -> None:
        for intersection in self.intersections.values():
            for approach in intersection.approaches:
                lane = self._lane_vehicles(intersection, approach)
                records = check_lane_collisions((intersection.intersection_id, approach), lane,
                                                previous_positions, self.geometry.min_gap)
                for record in records:
                    if record.collision:
                        self._stats['collisions'] += 1
                        logger.warning(f'{self.sim_time:05.1f}s: Collision in lane {record.lane!r} between '
                                       f'{record.leader_id} and {record.follower_id}')
                    else:
                        self._stats['near_misses'] += 1
                        logger.debug(f'{self.sim_time:05.1f}s: Near miss in lane {record.lane!r} '
                                     f'({record.distance:.2f} apart)')
                intersection.update_queue(
                    approach, sum(1 for vehicle in lane if vehicle.state is VehicleState.STOPPED)
                )

    def _verify_invariants(self, previous_positions: dict[int, float]) -> None:
        registered = 0
        for intersection_id, intersection in self.intersections.items():
            if conflicts := intersection.conflicting_greens():
                raise SimulationError(f'Conflicting greens at intersection {intersection_id}: {conflicts!r}')
            for light in intersection.lights.values():
                if not isinstance(light.phase, LightPhase):
                    raise SimulationError(f'Light {light.light_id} in invalid phase {light.phase!r}')
            for approach, lane in intersection.lanes.items():
                registered += len(lane)
                for vehicle_id in lane:
                    vehicle = self.vehicles.get(vehicle_id)
                    if vehicle is None or vehicle.lane != (intersection_id, approach):
                        raise SimulationError(f'Lane {intersection_id}-{approach.value} holds '
                                              f'unknown vehicle {vehicle_id}')
        if registered != len(self.vehicles):
            raise SimulationError(f'{len(self.vehicles)} vehicles but {registered} lane entries')

        for vehicle_id, vehicle in self.vehicles.items():
            limit = vehicle.speed_limit(self.weather)
            if not 0.0 <= vehicle.speed <= limit + TOLERANCE:
                raise SimulationError(f'{vehicle.name} speed {vehicle.speed:.3f} outside [0, {limit:.3f}]')
            if vehicle.state is VehicleState.STOPPED and vehicle.speed != 0.0:
                raise SimulationError(f'{vehicle.name} is stopped at speed {vehicle.speed:.3f}')
            previous = previous_positions.get(vehicle_id)
            if previous is not None and vehicle.position < previous - TOLERANCE:
                raise SimulationError(f'{vehicle.name} moved backwards from {previous:.2f} '
                                      f'to {vehicle.position:.2f}')

    # Snapshot:

    def _build_snapshot(self, elapsed: float) -> SimulationSnapshot:
        stats = TickStats.from_counter(self._stats)
        self._stats = Counter()
        self.statistics.record_tick(elapsed, stats)
        for intersection_id, intersection in self.intersections.items():
            self.statistics.record_intersection(
                intersection_id,
                {approach: intersection.queue_length(approach) for approach in intersection.approaches},
                intersection.efficiency_score(),
                self._intersection_counts.get(intersection_id),
            )
        self._intersection_counts.clear()
        current = self.vehicles.values()
        self.statistics.record_vehicles(Counter(vehicle.kind for vehicle in current),
                                        Counter(vehicle.state for vehicle in current),
                                        stuck=sum(1 for vehicle in current if vehicle.is_stuck()))

        intersections = tuple(
            IntersectionView(
                intersection_id=intersection_id,
                position=intersection.position,
                lights=tuple(
                    LightView(intersection_id, approach, light.phase, light.phase_elapsed,
                              light.time_remaining(), light.overridden)
                    for approach, light in intersection.lights.items()
                ),
                queue_lengths=tuple((approach, intersection.queue_length(approach))
                                    for approach in intersection.approaches),
                overrides=tuple((approach, intersection.overrides[approach])
                                for approach in intersection.approaches
                                if approach in intersection.overrides),
            )
            for intersection_id, intersection in self.intersections.items()
        )
        vehicles = tuple(
            VehicleView(vehicle_id, vehicle.kind, vehicle.lane[0], vehicle.lane[1],
                        vehicle.position, vehicle.speed, vehicle.state)
            for vehicle_id, vehicle in sorted(self.vehicles.items())
        )
        roads = tuple(sorted((min(first, second), max(first, second), data['length'])
                             for first, second, data in self.network.edges(data=True)))
        return SimulationSnapshot(
            tick=self.tick,
            sim_time=self.sim_time,
            intersections=intersections,
            vehicles=vehicles,
            roads=roads,
            weather=self.weather,
            spawn_multiplier=self.spawn_multiplier,
            stats=stats,
            summary=self.statistics.summary(),
        )
