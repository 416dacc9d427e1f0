#! /usr/bin/env python3.12
'''
Command line entry point:
    python -m trafficsim --preset demo
    python -m trafficsim --headless --duration 600 --seed 7 --layout grid
'''

# Standard Library:
import argparse
from dataclasses import replace
from datetime import datetime
import logging
import signal
import sys

# Third-Party:
from rich.console import Console
from rich.logging import RichHandler

# Local:
from trafficsim.config import LAYOUTS, PRESETS, apply_env_overrides, load_config, preset
from trafficsim.errors import ConfigError, SimulationError
from trafficsim.rendering import LiveView
from trafficsim.simulation.commands import Shutdown
from trafficsim.simulation.engine import SimulationEngine
from trafficsim.simulation.runner import SimulationRunner
from trafficsim.simulation.statistics import report_results


logger = logging.getLogger('trafficsim')

# Global Constants:
HEADLESS_DURATION = 600  # Seconds simulated by a headless run without --duration


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog='trafficsim',
                                description='Terminal traffic intersection simulator.')
    p.add_argument('--config', type=str, help='JSON configuration file')
    p.add_argument('--preset', type=str, choices=PRESETS, default=None)
    p.add_argument('--seed', type=int, default=None, help='Random seed for reproducible runs')
    p.add_argument('--time-scale', type=float, default=None)
    p.add_argument('--max-vehicles', type=int, default=None)
    p.add_argument('--spawn-rate', type=float, default=None, help='Vehicles per second per intersection')
    p.add_argument('--fps', type=int, default=None, help='Ticks per second')
    p.add_argument('--layout', type=str, choices=LAYOUTS, default=None)
    p.add_argument('--duration', type=float, default=None, help='Seconds to run (default: until Ctrl-C)')
    p.add_argument('--headless', action='store_true', help='Virtual time, no live view')
    p.add_argument('--no-weather', action='store_true')
    p.add_argument('--no-emergency', action='store_true')
    p.add_argument('--no-rush-hour', action='store_true')
    p.add_argument('--debug', action='store_true')
    return p


def parse_args(argv: list[str] | None=None) -> argparse.Namespace:
    return build_argparser().parse_args(argv)


def build_config(args: argparse.Namespace):
    '''
    Preset, then configuration file, then environment, then command line options
    '''
    config = preset(args.preset or 'default')
    if args.config:
        config = load_config(args.config, base=config)
    config = apply_env_overrides(config)
    overrides = {
        'random_seed': args.seed,
        'time_scale': args.time_scale,
        'max_vehicles': args.max_vehicles,
        'spawn_rate': args.spawn_rate,
        'target_fps': args.fps,
        'layout': args.layout,
    }
    overrides = {name: value for name, value in overrides.items() if value is not None}
    if args.no_weather:
        overrides['weather_enabled'] = False
    if args.no_emergency:
        overrides['emergency_enabled'] = False
    if args.no_rush_hour:
        overrides['rush_hour_enabled'] = False
    if args.debug:
        overrides['debug'] = True
    return replace(config, **overrides).validate()


def configure_logging(console: Console, debug: bool=False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(message)s',
        handlers=[RichHandler(console=console, show_path=debug, rich_tracebacks=True)],
        force=True,
    )


def main(argv: list[str] | None=None) -> int:
    args = parse_args(argv)
    console = Console(stderr=True)
    configure_logging(console, args.debug)
    try:
        config = build_config(args)
    except ConfigError as exc:
        logger.error(f'Invalid configuration: {exc}')
        return 2
    configure_logging(console, config.debug)

    engine = SimulationEngine(config)
    runner = SimulationRunner(engine, realtime=not args.headless)

    def request_shutdown(signum, frame):
        # Only queues the request; the runner stops between ticks
        runner.submit(Shutdown())

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, request_shutdown)

    duration = args.duration if args.duration is not None or not args.headless else HEADLESS_DURATION
    logger.info(f'Starting traffic simulation - {config.layout} layout - at '
                f'{datetime.now():%Y-%m-%d %H:%M:%S}'
                + (f' for {duration} seconds' if duration is not None else ''))
    try:
        if args.headless:
            runner.run(duration=duration)
        else:
            with LiveView(console=Console(), geometry=engine.geometry,
                          refresh_per_second=config.target_fps) as view:
                runner.consumers.append(view)
                runner.run(duration=duration)
    except SimulationError as exc:
        logger.error(f'Simulation aborted: {exc}')
        return 1

    if runner.last_snapshot is not None:
        out = Console()
        out.print()
        for line in report_results(runner.last_snapshot.summary):
            out.print(line)
    return 0


if __name__ == '__main__':
    sys.exit(main())
