'''
Simulation configuration:
* One flat dataclass with defaults matching the interactive simulator
* Presets (default, demo, performance, debug, stormy)
* JSON configuration files and TRAFFIC_SIM_* environment overrides
* validate() fails fast with ConfigError - the engine never starts on bad input
'''

# Standard Library:
from dataclasses import asdict, dataclass, fields, replace
import json
import logging
import math
import os
from pathlib import Path
from typing import Any

# Local:
from trafficsim.errors import ConfigError
from trafficsim.traffic.lights import LightDurations
from trafficsim.traffic.vehicles import LaneGeometry


logger = logging.getLogger(__name__)

# Global Constants:
PRESETS = ('default', 'demo', 'performance', 'debug', 'stormy')
LAYOUTS = ('single', 'corridor', 'grid')
# Environment variable -> configuration field
ENV_OVERRIDES = {
    'TRAFFIC_SIM_FPS': 'target_fps',
    'TRAFFIC_SIM_MAX_VEHICLES': 'max_vehicles',
    'TRAFFIC_SIM_SPAWN_RATE': 'spawn_rate',
    'TRAFFIC_SIM_TIME_SCALE': 'time_scale',
    'TRAFFIC_SIM_ENABLE_WEATHER': 'weather_enabled',
    'TRAFFIC_SIM_ENABLE_EMERGENCY': 'emergency_enabled',
    'TRAFFIC_SIM_ENABLE_DEBUG': 'debug',
    'TRAFFIC_SIM_SEED': 'random_seed',
    'TRAFFIC_SIM_LAYOUT': 'layout',
}


@dataclass
class SimulationConfig:
    # Light timing in seconds:
    red_duration: float = 10.0
    yellow_duration: float = 2.0
    green_duration: float = 8.0
    concurrent_opposites: bool = True  # Opposite approaches may share green

    # Emergency vehicles:
    emergency_enabled: bool = True
    emergency_probability: float = 0.002  # Per tick, before weather scaling
    emergency_override_duration: float = 15.0

    # Weather:
    weather_enabled: bool = True
    weather_interval_ticks: int = 900
    weather_jitter_ticks: int = 300
    weather_ramp_duration: float = 20.0

    # Rush hour:
    rush_hour_enabled: bool = True
    rush_hour_interval_ticks: int = 1800
    rush_hour_jitter_ticks: int = 300
    rush_hour_multiplier: float = 2.5

    # Traffic:
    max_vehicles: int = 100
    road_capacity: int = 12  # Vehicles per approach lane
    spawn_rate: float = 0.5  # Vehicles per second per intersection
    truck_probability: float = 0.18

    # Lane geometry:
    lane_length: float = 80.0
    stop_line: float = 40.0
    min_gap: float = 5.0
    ttc_threshold: float = 2.0

    # Timing:
    time_scale: float = 1.0
    target_fps: int = 30
    max_step: float = 0.25  # Largest simulated step after a stall

    layout: str = 'single'
    random_seed: int | None = None
    statistics_window: int = 300  # Ticks kept in the rolling window
    debug: bool = False

    @property
    def tick_interval(self) -> float:
        return 1 / self.target_fps

    def light_durations(self) -> LightDurations:
        return LightDurations(red=self.red_duration, yellow=self.yellow_duration,
                              green=self.green_duration)

    def lane_geometry(self) -> LaneGeometry:
        return LaneGeometry(stop_line=self.stop_line, length=self.lane_length,
                            min_gap=self.min_gap, ttc_threshold=self.ttc_threshold)

    def validate(self) -> 'SimulationConfig':
        '''
        Check every value, raising ConfigError on the first problem found

        Returns:
            The configuration itself so calls can be chained
        '''
        for name in ('red_duration', 'yellow_duration', 'green_duration',
                     'emergency_override_duration'):
            _require(getattr(self, name) > 0, f'{name} must be positive, got: {getattr(self, name)}')
        _require(self.weather_ramp_duration >= 0,
                 f'weather_ramp_duration must not be negative, got: {self.weather_ramp_duration}')
        for name in ('emergency_probability', 'truck_probability'):
            value = getattr(self, name)
            _require(0 <= value <= 1, f'{name} must be within [0, 1], got: {value}')
        _require(self.road_capacity > 0, f'road_capacity must be positive, got: {self.road_capacity}')
        _require(self.max_vehicles > 0, f'max_vehicles must be positive, got: {self.max_vehicles}')
        _require(self.spawn_rate >= 0, f'spawn_rate must not be negative, got: {self.spawn_rate}')
        _require(self.rush_hour_multiplier > 0,
                 f'rush_hour_multiplier must be positive, got: {self.rush_hour_multiplier}')
        _require(self.time_scale > 0, f'time_scale must be positive, got: {self.time_scale}')
        _require(self.target_fps > 0, f'target_fps must be positive, got: {self.target_fps}')
        _require(self.max_step > 0, f'max_step must be positive, got: {self.max_step}')
        for name in ('weather_interval_ticks', 'rush_hour_interval_ticks', 'statistics_window'):
            _require(getattr(self, name) > 0, f'{name} must be positive, got: {getattr(self, name)}')
        for name in ('weather_jitter_ticks', 'rush_hour_jitter_ticks'):
            _require(getattr(self, name) >= 0, f'{name} must not be negative, got: {getattr(self, name)}')
        _require(self.layout in LAYOUTS, f'Expected layout of {", ".join(LAYOUTS)}, got: {self.layout}')
        # Raises ConfigError for inconsistent geometry or light timing:
        self.light_durations()
        self.lane_geometry()
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def preset(name: str) -> SimulationConfig:
    '''
    Convenience function to select a named configuration
    '''
    match name:
        case 'default':
            return SimulationConfig()
        case 'demo':
            return SimulationConfig(max_vehicles=50, spawn_rate=0.8, time_scale=1.5,
                                    emergency_probability=0.004)
        case 'performance':
            return SimulationConfig(target_fps=60, max_vehicles=200, spawn_rate=1.5,
                                    weather_enabled=False, layout='grid')
        case 'debug':
            return SimulationConfig(target_fps=15, max_vehicles=20, spawn_rate=0.2,
                                    time_scale=0.5, random_seed=42, debug=True)
        case 'stormy':
            return SimulationConfig(weather_interval_ticks=300, weather_jitter_ticks=60,
                                    emergency_probability=0.005)
        case _:
            raise ConfigError(f'Expected preset of {", ".join(PRESETS)}, got: {name}')


def _field_types() -> dict[str, type]:
    '''
    Map each field to the type used to parse text values, based on its default
    '''
    types = {}
    for item in fields(SimulationConfig):
        types[item.name] = int if item.default is None else type(item.default)
    return types


def _parse_value(name: str, value: Any, kind: type) -> Any:
    if value is None and name == 'random_seed':
        return None
    if kind is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ('1', 'true', 'yes', 'on'):
            return True
        if text in ('0', 'false', 'no', 'off'):
            return False
        raise ConfigError(f'Expected a boolean for {name}, got: {value!r}')
    if kind is float and isinstance(value, bool):
        raise ConfigError(f'Expected a number for {name}, got: {value!r}')
    try:
        parsed = kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f'Invalid value for {name}: {value!r} ({exc})') from exc
    if kind is float and not math.isfinite(parsed):
        raise ConfigError(f'Expected a finite number for {name}, got: {value!r}')
    return parsed


def config_from_dict(data: dict[str, Any], base: SimulationConfig | None=None) -> SimulationConfig:
    '''
    Build a configuration from plain data, rejecting unknown keys

    Args:
        data: Mapping of field name to value; a 'preset' key selects the base configuration.
        base: Configuration to start from when data names no preset.

    Returns:
        A validated SimulationConfig.
    '''
    if not isinstance(data, dict):
        raise ConfigError(f'Expected a mapping of configuration values, got: {type(data).__name__}')
    data = dict(data)
    if preset_name := data.pop('preset', None):
        base = preset(preset_name)
    base = base or SimulationConfig()
    types = _field_types()
    unknown = sorted(set(data) - set(types))
    if unknown:
        raise ConfigError(f'Unknown configuration keys: {", ".join(unknown)}')
    values = {name: _parse_value(name, value, types[name]) for name, value in data.items()}
    return replace(base, **values).validate()


def load_config(path: str | Path, base: SimulationConfig | None=None) -> SimulationConfig:
    '''
    Load a JSON configuration file
    '''
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except FileNotFoundError as exc:
        raise ConfigError(f'Configuration file not found: {path}') from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f'Invalid JSON in {path}: {exc}') from exc
    logger.debug(f'Loaded configuration from {path}')
    return config_from_dict(data, base)


def apply_env_overrides(config: SimulationConfig,
                        environ: dict[str, str] | None=None) -> SimulationConfig:
    '''
    Apply TRAFFIC_SIM_* environment variables on top of config
    '''
    environ = os.environ if environ is None else environ
    types = _field_types()
    values = {}
    for variable, name in ENV_OVERRIDES.items():
        if (value := environ.get(variable)) is not None:
            values[name] = _parse_value(name, value, types[name])
            logger.debug(f'Environment override {variable} -> {name}={values[name]!r}')
    if not values:
        return config
    return replace(config, **values).validate()
