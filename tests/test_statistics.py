from collections import Counter

import pytest

from trafficsim.traffic.approach import Approach
from trafficsim.traffic.vehicles import VehicleKind, VehicleState
from trafficsim.simulation.snapshot import CongestionPoint, CongestionSeverity, TickStats
from trafficsim.simulation.statistics import StatisticsCollector, congestion_severity, report_results


N, E = Approach.NORTH, Approach.EAST


class TestCollector:
    def test_totals_and_window(self):
        collector = StatisticsCollector(window=3)
        for exited in (1, 0, 2, 1):
            collector.record_tick(0.5, TickStats(spawned=1, exited=exited))
        summary = collector.summary()
        assert summary.total_spawned == 4
        assert summary.total_exited == 4
        assert summary.window_ticks == 3
        # 3 vehicles left during the last 1.5 seconds
        assert summary.throughput_per_minute == pytest.approx(120.0)

    def test_wait_and_travel_times(self):
        collector = StatisticsCollector()
        collector.record_exit(0.0, 10.0)
        collector.record_exit(4.0, 20.0)
        summary = collector.summary()
        assert summary.vehicles_waited == 1
        assert summary.average_wait == pytest.approx(2.0)
        assert summary.max_wait == 4.0
        assert (summary.min_travel, summary.max_travel) == (10.0, 20.0)

    def test_empty(self):
        summary = StatisticsCollector().summary()
        assert summary.average_wait is None
        assert summary.throughput_per_minute == 0.0

    def test_window_must_be_positive(self):
        with pytest.raises(ValueError):
            StatisticsCollector(window=0)


class TestIntersections:
    @pytest.mark.parametrize('waiting, severity', [
        (0, None),
        (2, None),
        (3, CongestionSeverity.LIGHT),
        (5, CongestionSeverity.LIGHT),
        (6, CongestionSeverity.MODERATE),
        (10, CongestionSeverity.MODERATE),
        (11, CongestionSeverity.HEAVY),
        (20, CongestionSeverity.HEAVY),
        (21, CongestionSeverity.SEVERE),
    ])
    def test_congestion_severity(self, waiting, severity):
        assert congestion_severity(waiting) is severity

    def test_counts_peaks_and_efficiency(self):
        collector = StatisticsCollector()
        collector.record_intersection(0, {N: 1, E: 4}, 90.0, Counter(vehicles_processed=2, light_cycles=1))
        collector.record_intersection(0, {N: 0, E: 7}, 86.0, Counter(emergency_activations=1))
        collector.record_intersection(1, {N: 0, E: 0}, 100.0)
        summary = collector.summary()
        stats = summary.intersection(0)
        assert (stats.vehicles_processed, stats.light_cycles, stats.emergency_activations) == (2, 1, 1)
        assert stats.peak_queue == 7
        assert stats.efficiency == 86.0
        assert stats.average_efficiency == pytest.approx(88.0)
        assert summary.intersection(1).vehicles_processed == 0
        assert summary.congestion == (CongestionPoint(0, E, 7, CongestionSeverity.MODERATE),)

    def test_peak_survives_queue_clearing(self):
        collector = StatisticsCollector()
        collector.record_intersection(0, {N: 12}, 76.0)
        collector.record_intersection(0, {N: 0}, 100.0)
        summary = collector.summary()
        assert summary.intersection(0).peak_queue == 12
        assert summary.congestion == ()

    def test_overall_efficiency_stuck_penalty(self):
        collector = StatisticsCollector()
        assert collector.summary().overall_efficiency is None
        collector.record_intersection(0, {N: 0}, 100.0)
        collector.record_intersection(1, {N: 0}, 80.0)
        collector.record_vehicles(Counter({VehicleKind.CAR: 3, VehicleKind.TRUCK: 1}),
                                  Counter({VehicleState.STOPPED: 2, VehicleState.MOVING: 2}), stuck=2)
        summary = collector.summary()
        # Half the vehicles stuck costs 15% of the mean score
        assert summary.overall_efficiency == pytest.approx(76.5)
        assert summary.stuck_vehicles == 2
        assert dict(summary.vehicles_by_kind) == {VehicleKind.CAR: 3, VehicleKind.TRUCK: 1,
                                                  VehicleKind.EMERGENCY: 0}
        assert dict(summary.vehicles_by_state)[VehicleState.STOPPED] == 2
        assert dict(summary.vehicles_by_state)[VehicleState.PARKED] == 0


class TestTickStats:
    def test_from_counter(self):
        stats = TickStats.from_counter(Counter(spawned=2, collisions=1))
        assert stats.as_dict()['spawned'] == 2
        assert stats.collisions == 1

    def test_unknown_counter(self):
        with pytest.raises(KeyError):
            TickStats.from_counter(Counter(teleported=1))


class TestReport:
    def test_report_without_exits(self):
        lines = report_results(StatisticsCollector().summary())
        assert 'No wait times recorded.' in lines
        assert 'No total times recorded.' in lines

    def test_report_with_exits(self):
        collector = StatisticsCollector()
        collector.record_exit(3.0, 12.0)
        lines = report_results(collector.summary())
        assert 'Average Wait Time: 3.00s' in lines
        assert 'Min Total Time: 12.00s' in lines

    def test_report_intersections_and_congestion(self):
        collector = StatisticsCollector()
        collector.record_intersection(0, {N: 0, E: 7}, 86.0, Counter(vehicles_processed=2, light_cycles=3))
        collector.record_vehicles(Counter({VehicleKind.CAR: 7}), Counter({VehicleState.STOPPED: 7}))
        lines = report_results(collector.summary())
        assert ('Intersection 0: 2 processed, 3 light cycles, 0 emergency activations, '
                'peak queue 7, efficiency 86.0') in lines
        assert 'Overall Efficiency: 86.0 (0 stuck vehicles)' in lines
        assert 'Congestion at 0-E: moderate (7 waiting)' in lines
        assert 'Vehicles in network: car 7' in lines

    def test_report_without_intersections(self):
        assert 'No intersection statistics recorded.' in report_results(StatisticsCollector().summary())
