'''
Statistics collector:
* Cumulative totals for the whole run
* Rolling window (deque) of per-tick counts plus wait and travel times
* Per-intersection counts, queue peaks and efficiency scores
* Congestion points and vehicle counts by kind and state for the latest tick
* report_results() formats the end-of-run summary from a snapshot
'''

# Standard Library:
from collections import Counter, deque
import statistics

# Local:
from trafficsim.traffic.approach import Approach
from trafficsim.traffic.vehicles import VehicleKind, VehicleState
from trafficsim.simulation.snapshot import (CongestionPoint, CongestionSeverity, IntersectionStats,
                                            StatisticsSummary, TickStats)


# Global Constants:
STUCK_PENALTY = 0.3  # Largest share of overall efficiency lost to stuck vehicles


def congestion_severity(queue_length: int) -> CongestionSeverity | None:
    '''
    Classify one approach queue; None below 3 waiting vehicles
    '''
    if queue_length > 20:
        return CongestionSeverity.SEVERE
    if queue_length > 10:
        return CongestionSeverity.HEAVY
    if queue_length > 5:
        return CongestionSeverity.MODERATE
    if queue_length > 2:
        return CongestionSeverity.LIGHT
    return None


class StatisticsCollector:
    def __init__(self, window: int=300) -> None:
        if window <= 0:
            raise ValueError(f'Statistics window must be positive, got: {window}')
        self.window = window
        self.totals = Counter()
        self.ticks = deque(maxlen=window)  # (elapsed, TickStats)
        self.wait_times = deque(maxlen=window)  # Wait times of vehicles that left
        self.travel_times = deque(maxlen=window)  # Total time in the network
        self.intersection_totals = {}  # Intersection id -> Counter of processed, activations, cycles
        self.peak_queues = Counter()
        self.queues = {}  # Intersection id -> latest {approach: waiting}
        self.efficiency = {}  # Intersection id -> deque of per-tick scores
        self.vehicle_kinds = Counter()
        self.vehicle_states = Counter()
        self.stuck = 0

    def record_tick(self, elapsed: float, stats: TickStats) -> None:
        self.ticks.append((elapsed, stats))
        self.totals.update({name: value for name, value in stats.as_dict().items() if value})

    def record_exit(self, wait_time: float, travel_time: float) -> None:
        self.wait_times.append(wait_time)
        self.travel_times.append(travel_time)

    def record_intersection(self, intersection_id: int, queues: dict[Approach, int], efficiency: float,
                            counts: Counter | None=None) -> None:
        """
        Records one tick of a single intersection.

        Args:
            intersection_id (int): Intersection the figures belong to.
            queues (dict[Approach, int]): Stopped vehicles per approach after this tick.
            efficiency (float): Intersection efficiency score for this tick.
            counts (Counter): vehicles_processed, emergency_activations and light_cycles
                that happened this tick.
        """
        totals = self.intersection_totals.setdefault(intersection_id, Counter())
        if counts:
            totals.update(counts)
        self.queues[intersection_id] = dict(queues)
        self.peak_queues[intersection_id] = max(self.peak_queues[intersection_id], *queues.values(), 0)
        self.efficiency.setdefault(intersection_id, deque(maxlen=self.window)).append(efficiency)

    def record_vehicles(self, kinds: Counter, states: Counter, stuck: int=0) -> None:
        '''
        Replace the vehicle census with the counts after the latest tick
        '''
        self.vehicle_kinds = Counter(kinds)
        self.vehicle_states = Counter(states)
        self.stuck = stuck

    def throughput_per_minute(self) -> float:
        span = sum(elapsed for elapsed, _ in self.ticks)
        if span <= 0:
            return 0.0
        return sum(stats.exited for _, stats in self.ticks) * 60 / span

    def intersection_stats(self) -> tuple[IntersectionStats, ...]:
        return tuple(
            IntersectionStats(
                intersection_id=intersection_id,
                vehicles_processed=totals['vehicles_processed'],
                emergency_activations=totals['emergency_activations'],
                light_cycles=totals['light_cycles'],
                peak_queue=self.peak_queues[intersection_id],
                efficiency=self.efficiency[intersection_id][-1],
                average_efficiency=statistics.mean(self.efficiency[intersection_id]),
            )
            for intersection_id, totals in sorted(self.intersection_totals.items())
        )

    def congestion_points(self) -> tuple[CongestionPoint, ...]:
        '''
        Approaches whose latest queue is at least lightly congested, worst first
        '''
        points = []
        for intersection_id, queues in sorted(self.queues.items()):
            for approach, waiting in queues.items():
                if severity := congestion_severity(waiting):
                    points.append(CongestionPoint(intersection_id, approach, waiting, severity))
        return tuple(sorted(points, key=lambda point: -point.queue_length))

    def overall_efficiency(self) -> float | None:
        '''
        Mean of the latest intersection scores, less up to 30% for the share of stuck vehicles
        '''
        if not self.efficiency:
            return None
        mean = statistics.mean(scores[-1] for scores in self.efficiency.values())
        total = sum(self.vehicle_kinds.values())
        penalty = STUCK_PENALTY * self.stuck / total if total else 0.0
        return max(0.0, mean * (1.0 - penalty))

    def summary(self) -> StatisticsSummary:
        waits = list(self.wait_times)
        travels = list(self.travel_times)
        return StatisticsSummary(
            total_spawned=self.totals['spawned'],
            total_exited=self.totals['exited'],
            total_emergency=self.totals['emergency_dispatched'],
            total_collisions=self.totals['collisions'],
            total_near_misses=self.totals['near_misses'],
            total_overrides_denied=self.totals['overrides_denied'],
            vehicles_waited=sum(1 for w in waits if w > 0),
            average_wait=statistics.mean(waits) if waits else None,
            max_wait=max(waits) if waits else None,
            average_travel=statistics.mean(travels) if travels else None,
            max_travel=max(travels) if travels else None,
            min_travel=min(travels) if travels else None,
            throughput_per_minute=self.throughput_per_minute(),
            window_ticks=len(self.ticks),
            overall_efficiency=self.overall_efficiency(),
            intersections=self.intersection_stats(),
            congestion=self.congestion_points(),
            vehicles_by_kind=tuple((kind, self.vehicle_kinds[kind]) for kind in VehicleKind),
            vehicles_by_state=tuple((state, self.vehicle_states[state]) for state in VehicleState),
            stuck_vehicles=self.stuck,
        )


def report_results(summary: StatisticsSummary) -> list[str]:
    """
    Generates a report of the simulation results.
    """
    lines = ['🚦 Vehicle Wait Time Summary 🚦',
             f'Total Vehicles: {summary.total_spawned} spawned, {summary.total_exited} exited',
             f'Vehicles that waited: {summary.vehicles_waited}']
    # Handle case where no vehicle left yet
    if summary.average_wait is not None:
        lines.append(f'Average Wait Time: {summary.average_wait:.2f}s')
        lines.append(f'Max Wait Time: {summary.max_wait:.2f}s')
    else:
        lines.append('No wait times recorded.')

    lines.append('')
    lines.append('🕒 Vehicle Total Time Summary 🕒')
    if summary.average_travel is not None:
        lines.append(f'Average Total Time: {summary.average_travel:.2f}s')
        lines.append(f'Max Total Time: {summary.max_travel:.2f}s')
        lines.append(f'Min Total Time: {summary.min_travel:.2f}s')
    else:
        lines.append('No total times recorded.')

    lines.append('')
    lines.append('🚑 Incidents 🚑')
    lines.append(f'Emergency dispatches: {summary.total_emergency} '
                 f'({summary.total_overrides_denied} override requests denied)')
    lines.append(f'Collisions: {summary.total_collisions}, near misses: {summary.total_near_misses}')
    lines.append(f'Throughput: {summary.throughput_per_minute:.1f} vehicles/min '
                 f'(last {summary.window_ticks} ticks)')

    lines.append('')
    lines.append('🚥 Intersection Summary 🚥')
    if not summary.intersections:
        lines.append('No intersection statistics recorded.')
    for stats in summary.intersections:
        lines.append(f'Intersection {stats.intersection_id}: {stats.vehicles_processed} processed, '
                     f'{stats.light_cycles} light cycles, {stats.emergency_activations} emergency '
                     f'activations, peak queue {stats.peak_queue}, '
                     f'efficiency {stats.average_efficiency:.1f}')
    if summary.overall_efficiency is not None:
        lines.append(f'Overall Efficiency: {summary.overall_efficiency:.1f} '
                     f'({summary.stuck_vehicles} stuck vehicles)')
    for point in summary.congestion:
        lines.append(f'Congestion at {point.intersection_id}-{point.approach.value}: '
                     f'{point.severity.value} ({point.queue_length} waiting)')
    if census := [f'{kind.value} {count}' for kind, count in summary.vehicles_by_kind if count]:
        lines.append(f'Vehicles in network: {", ".join(census)}')
    return lines
