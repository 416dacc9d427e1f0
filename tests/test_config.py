import json

import pytest

from trafficsim.config import (ENV_OVERRIDES, PRESETS, SimulationConfig, apply_env_overrides,
                               config_from_dict, load_config, preset)
from trafficsim.errors import ConfigError


class TestDefaults:
    def test_defaults_are_valid(self):
        config = SimulationConfig().validate()
        assert config.tick_interval == pytest.approx(1 / 30)
        durations = config.light_durations()
        assert (durations.red, durations.yellow, durations.green) == (10.0, 2.0, 8.0)
        assert config.lane_geometry().stop_line == 40.0
        assert config.to_dict()['road_capacity'] == 12

    @pytest.mark.parametrize('kwargs', [
        {'red_duration': 0.0},
        {'yellow_duration': -2.0},
        {'emergency_probability': 1.5},
        {'truck_probability': -0.1},
        {'road_capacity': 0},
        {'max_vehicles': 0},
        {'spawn_rate': -0.5},
        {'time_scale': 0.0},
        {'target_fps': 0},
        {'weather_interval_ticks': 0},
        {'rush_hour_jitter_ticks': -1},
        {'layout': 'ring'},
        {'stop_line': 90.0},
        {'min_gap': 0.0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            SimulationConfig(**kwargs).validate()


class TestPresets:
    @pytest.mark.parametrize('name', PRESETS)
    def test_presets_are_valid(self, name):
        assert preset(name).validate()

    def test_debug_preset_is_reproducible(self):
        config = preset('debug')
        assert config.debug
        assert config.random_seed == 42

    def test_unknown_preset(self):
        with pytest.raises(ConfigError):
            preset('turbo')


class TestFiles:
    def test_load_json(self, tmp_path):
        path = tmp_path / 'sim.json'
        path.write_text(json.dumps({'preset': 'demo', 'green_duration': 12, 'layout': 'grid'}))
        config = load_config(path)
        assert config.green_duration == 12.0
        assert isinstance(config.green_duration, float)
        assert config.layout == 'grid'
        assert config.max_vehicles == 50

    def test_base_is_kept_without_preset(self):
        base = SimulationConfig(max_vehicles=7)
        assert config_from_dict({'spawn_rate': 0.1}, base).max_vehicles == 7

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match='warp_speed'):
            config_from_dict({'warp_speed': 9})

    def test_wrong_type(self):
        with pytest.raises(ConfigError):
            config_from_dict({'max_vehicles': 'many'})
        with pytest.raises(ConfigError):
            config_from_dict({'spawn_rate': True})

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            config_from_dict([1, 2, 3])

    def test_bad_json(self, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{"red_duration": ')
        with pytest.raises(ConfigError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / 'missing.json')

    def test_invalid_value_in_file(self, tmp_path):
        path = tmp_path / 'sim.json'
        path.write_text(json.dumps({'road_capacity': -3}))
        with pytest.raises(ConfigError):
            load_config(path)


class TestEnvironment:
    def test_overrides_applied(self):
        environ = {
            'TRAFFIC_SIM_FPS': '20',
            'TRAFFIC_SIM_SPAWN_RATE': '1.25',
            'TRAFFIC_SIM_ENABLE_WEATHER': 'false',
            'TRAFFIC_SIM_SEED': '99',
            'UNRELATED': 'x',
        }
        config = apply_env_overrides(SimulationConfig(), environ)
        assert config.target_fps == 20
        assert config.spawn_rate == 1.25
        assert config.weather_enabled is False
        assert config.random_seed == 99

    def test_nothing_set_returns_same_config(self):
        config = SimulationConfig()
        assert apply_env_overrides(config, {}) is config

    def test_invalid_override(self):
        with pytest.raises(ConfigError):
            apply_env_overrides(SimulationConfig(), {'TRAFFIC_SIM_ENABLE_DEBUG': 'maybe'})
        with pytest.raises(ConfigError):
            apply_env_overrides(SimulationConfig(), {'TRAFFIC_SIM_MAX_VEHICLES': '0'})

    def test_reads_process_environment(self, monkeypatch):
        for variable in ENV_OVERRIDES:
            monkeypatch.delenv(variable, raising=False)
        monkeypatch.setenv('TRAFFIC_SIM_LAYOUT', 'corridor')
        assert apply_env_overrides(SimulationConfig()).layout == 'corridor'
