import pytest

from trafficsim.config import SimulationConfig
from trafficsim.simulation.engine import SimulationEngine
from trafficsim.simulation.weather import CLEAR_WEATHER, WeatherKind, WeatherState


@pytest.fixture
def clear():
    return CLEAR_WEATHER


@pytest.fixture
def storm():
    return WeatherState(WeatherKind.STORM, intensity=1.0, target_intensity=1.0)


@pytest.fixture
def quiet_config():
    """No spawning and no random events - tests drive everything explicitly."""
    return SimulationConfig(random_seed=7, spawn_rate=0.0, emergency_enabled=False,
                            weather_enabled=False, rush_hour_enabled=False, target_fps=10)


@pytest.fixture
def engine(quiet_config):
    return SimulationEngine(quiet_config)


@pytest.fixture
def busy_config():
    """Everything enabled and frequent, for invariant and determinism runs."""
    return SimulationConfig(random_seed=2024, spawn_rate=3.0, emergency_probability=0.02,
                            weather_interval_ticks=60, weather_jitter_ticks=20,
                            weather_ramp_duration=1.0, rush_hour_interval_ticks=90,
                            rush_hour_jitter_ticks=10, road_capacity=6, max_vehicles=40)
