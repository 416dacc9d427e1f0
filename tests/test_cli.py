import signal

import pytest

from trafficsim import __main__ as cli
from trafficsim.config import ENV_OVERRIDES
from trafficsim.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for variable in ENV_OVERRIDES:
        monkeypatch.delenv(variable, raising=False)
    # Keep the test session's own handlers and logging setup
    monkeypatch.setattr(signal, 'signal', lambda signum, handler: None)
    monkeypatch.setattr(cli, 'configure_logging', lambda console, debug=False: None)


class TestBuildConfig:
    def test_defaults(self):
        config = cli.build_config(cli.parse_args([]))
        assert config.layout == 'single'
        assert config.weather_enabled and config.emergency_enabled and config.rush_hour_enabled

    def test_flags_override_preset(self):
        args = cli.parse_args(['--preset', 'debug', '--seed', '3', '--fps', '12', '--layout', 'grid',
                               '--no-weather', '--no-emergency', '--no-rush-hour'])
        config = cli.build_config(args)
        assert config.debug
        assert config.random_seed == 3
        assert config.target_fps == 12
        assert config.layout == 'grid'
        assert not (config.weather_enabled or config.emergency_enabled or config.rush_hour_enabled)

    def test_environment_between_file_and_flags(self, tmp_path, monkeypatch):
        path = tmp_path / 'sim.json'
        path.write_text('{"max_vehicles": 10, "spawn_rate": 0.1}')
        monkeypatch.setenv('TRAFFIC_SIM_MAX_VEHICLES', '20')
        config = cli.build_config(cli.parse_args(['--config', str(path), '--spawn-rate', '0.3']))
        assert config.max_vehicles == 20
        assert config.spawn_rate == 0.3

    def test_invalid_flag_value(self):
        with pytest.raises(ConfigError):
            cli.build_config(cli.parse_args(['--spawn-rate', '-1']))

    def test_unknown_preset_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            cli.parse_args(['--preset', 'turbo'])


class TestMain:
    def test_headless_run_prints_report(self, capsys):
        assert cli.main(['--headless', '--duration', '3', '--seed', '1', '--fps', '10']) == 0
        out = capsys.readouterr().out
        assert 'Vehicle Wait Time Summary' in out
        assert 'Throughput' in out

    def test_invalid_configuration_exit_code(self):
        assert cli.main(['--headless', '--spawn-rate', '-1']) == 2
