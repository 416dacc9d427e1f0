'''
Terminal view - turns snapshots into rich renderables

Only reads SimulationSnapshot values; never touches the engine.
'''

# Standard Library:
import math

# Third-Party:
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

# Local:
from trafficsim.traffic.approach import get_direction
from trafficsim.traffic.lights import LightPhase
from trafficsim.traffic.vehicles import LaneGeometry, VehicleKind, VehicleState
from trafficsim.simulation.snapshot import SimulationSnapshot


PHASE_STYLES = {
    LightPhase.RED: 'bold red',
    LightPhase.YELLOW: 'bold yellow',
    LightPhase.GREEN: 'bold green',
}
VEHICLE_GLYPHS = {
    VehicleKind.CAR: ('C', 'cyan'),
    VehicleKind.TRUCK: ('T', 'magenta'),
    VehicleKind.EMERGENCY: ('E', 'bold red'),
}
STRIP_WIDTH = 40


def render_header(snapshot: SimulationSnapshot) -> Panel:
    weather = snapshot.weather
    text = Text()
    text.append(f'Tick {snapshot.tick}  ', style='bold')
    text.append(f'{snapshot.sim_time:06.1f}s  ')
    text.append(f'Weather: {weather.describe()} ', style='blue')
    text.append(f'(speed x{weather.speed_multiplier:.2f}, visibility x{weather.visibility_multiplier:.2f})  ')
    if snapshot.rush_hour:
        text.append(f'RUSH HOUR x{snapshot.spawn_multiplier:.1f}', style='bold yellow')
    return Panel(text, title='Traffic Simulation', border_style='cyan')


def render_lights(snapshot: SimulationSnapshot) -> Table:
    table = Table(title='Traffic Lights', show_lines=True)
    table.add_column('Light', style='cyan bold', justify='center')
    table.add_column('Phase', justify='center')
    table.add_column('Remaining (s)', style='magenta', justify='center')
    table.add_column('Queue', style='yellow', justify='center')
    table.add_column('Override (s)', style='red', justify='center')

    for view in snapshot.intersections:
        queues = dict(view.queue_lengths)
        overrides = dict(view.overrides)
        for light in view.lights:
            remaining = '-' if math.isinf(light.time_remaining) else f'{light.time_remaining:.1f}'
            override = f'{overrides[light.approach]:.1f}' if light.approach in overrides else ''
            table.add_row(f'{view.intersection_id}-{light.approach.value}',
                          Text(light.phase.name, style=PHASE_STYLES[light.phase]),
                          remaining, str(queues.get(light.approach, 0)), override)
    return table


def render_lanes(snapshot: SimulationSnapshot, geometry: LaneGeometry | None=None) -> Text:
    '''
    One strip per approach lane: vehicle glyphs with the stop line marked '|'
    '''
    geometry = geometry or LaneGeometry()
    scale = (STRIP_WIDTH - 1) / geometry.length
    stop_column = round(geometry.stop_line * scale)
    text = Text()
    for view in snapshot.intersections:
        for light in view.lights:
            cells = [('.', 'dim')] * STRIP_WIDTH
            cells[stop_column] = ('|', PHASE_STYLES[light.phase])
            for vehicle in snapshot.lane(view.intersection_id, light.approach):
                column = min(STRIP_WIDTH - 1, max(0, round(vehicle.position * scale)))
                glyph, style = VEHICLE_GLYPHS[vehicle.kind]
                if vehicle.state is VehicleState.PARKED:
                    glyph, style = 'P', 'dim'
                cells[column] = (glyph, style)
            text.append(f'{view.intersection_id}-{light.approach.value} ', style='bold')
            for glyph, style in cells:
                text.append(glyph, style=style)
            text.append('\n')
    return text


def render_roads(snapshot: SimulationSnapshot) -> Text:
    positions = {view.intersection_id: view.position for view in snapshot.intersections}
    text = Text()
    for first, second, length in snapshot.roads:
        axis = get_direction(positions[first], positions[second])
        text.append(f'Road {first} <-> {second} ({axis}, {length:.0f} units)\n', style='dim')
    return text


def render_stats(snapshot: SimulationSnapshot) -> Text:
    summary = snapshot.summary
    text = Text()
    text.append(f'Vehicles: {len(snapshot.vehicles)}  spawned {summary.total_spawned}  '
                f'exited {summary.total_exited}  ')
    text.append(f'emergency {summary.total_emergency}  ', style='red')
    text.append(f'collisions {summary.total_collisions}  near misses {summary.total_near_misses}  ')
    text.append(f'throughput {summary.throughput_per_minute:.1f}/min')
    if summary.overall_efficiency is not None:
        text.append(f'  efficiency {summary.overall_efficiency:.0f}')
    if summary.congestion:
        worst = summary.congestion[0]
        text.append(f'  congestion {worst.intersection_id}-{worst.approach.value} '
                    f'{worst.severity.value}', style='yellow')
    return text


def render_snapshot(snapshot: SimulationSnapshot, geometry: LaneGeometry | None=None) -> Group:
    parts = [render_header(snapshot), render_lights(snapshot), render_lanes(snapshot, geometry)]
    if snapshot.roads:
        parts.append(render_roads(snapshot))
    parts.append(render_stats(snapshot))
    return Group(*parts)


class LiveView:
    '''
    Snapshot consumer redrawing the terminal with rich.live.Live
    '''
    def __init__(self, console: Console | None=None, geometry: LaneGeometry | None=None,
                 refresh_per_second: int=30) -> None:
        self.console = console or Console()
        self.geometry = geometry
        self.live = Live(console=self.console, refresh_per_second=refresh_per_second,
                         auto_refresh=False)

    def __enter__(self) -> 'LiveView':
        self.live.__enter__()
        return self

    def __exit__(self, *exc_info) -> None:
        self.live.__exit__(*exc_info)

    def __call__(self, snapshot: SimulationSnapshot) -> None:
        self.live.update(render_snapshot(snapshot, self.geometry), refresh=True)
