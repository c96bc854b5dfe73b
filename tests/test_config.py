from shared.config.system import SystemConfig, load_system_config


def test_defaults_from_empty_document():
    cfg = load_system_config({}, env={})
    assert cfg == SystemConfig()
    assert cfg.refresh.interval_seconds == 30.0
    assert cfg.tally.location_top_n == 3
    assert cfg.export.enabled is False


def test_bundled_config_loads():
    cfg = load_system_config(env={})
    assert cfg.api.base_url
    assert cfg.tally.trend_window_days == 7


def test_document_values():
    cfg = load_system_config(
        {
            'api': {'base_url': 'https://awards.test/api', 'token': 't0k', 'timeout_seconds': 5},
            'refresh': {'enabled': False, 'interval_seconds': 12.5},
            'tally': {'location_top_n': 5, 'trend_window_days': 1, 'trend_threshold_pct': 0},
            'export': {'enabled': True, 'state_dir': '/tmp/state', 'relative_path': 'awards.json'},
        },
        env={},
    )
    assert cfg.api.base_url == 'https://awards.test/api'
    assert cfg.api.token == 't0k'
    assert cfg.api.timeout_seconds == 5.0
    assert cfg.refresh.enabled is False
    assert cfg.refresh.interval_seconds == 12.5
    assert cfg.tally.location_top_n == 5
    assert cfg.tally.trend_window_days == 1
    assert cfg.tally.trend_threshold_pct == 0.0
    assert cfg.export.relative_path == 'awards.json'


def test_invalid_values_fall_back_to_defaults():
    cfg = load_system_config(
        {
            'api': 'not-a-section',
            'refresh': {'interval_seconds': -3},
            'tally': {'location_top_n': 0, 'top_performers_limit': True, 'trend_threshold_pct': 'x'},
        },
        env={},
    )
    assert cfg.api.base_url == 'http://localhost:8080/api'
    assert cfg.refresh.interval_seconds == 30.0
    assert cfg.tally.location_top_n == 3
    assert cfg.tally.top_performers_limit == 5
    assert cfg.tally.trend_threshold_pct == 2.0


def test_environment_overrides():
    cfg = load_system_config(
        {},
        env={
            'AWARDS_API_URL': 'https://prod.test/api',
            'AWARDS_API_TOKEN': 'env-token',
            'AWARDS_API_TIMEOUT': '2.5',
            'AWARDS_REFRESH_INTERVAL': '90',
            'AWARDS_EXPORT_ENABLED': 'yes',
        },
    )
    assert cfg.api.base_url == 'https://prod.test/api'
    assert cfg.api.token == 'env-token'
    assert cfg.api.timeout_seconds == 2.5
    assert cfg.refresh.interval_seconds == 90.0
    assert cfg.export.enabled is True


def test_invalid_interval_override_is_ignored():
    cfg = load_system_config({'refresh': {'interval_seconds': 45}}, env={'AWARDS_REFRESH_INTERVAL': 'soon'})
    assert cfg.refresh.interval_seconds == 45.0
