import pytest

from coverage_sim import ConfigError, Settings, SimulationConfig, make_settings


def test_defaults_are_valid():
    settings = Settings()
    assert settings.get_int("env.grid.width") == 10
    assert settings.get_bool("robots.breakable") is True
    assert settings.get_str("sim.scenario") == "coverage"


def test_set_parses_strings_by_type():
    settings = Settings()
    assert settings.set("env.grid.width", "7") == 7
    assert settings.set("robots.breakable", "off") is False
    assert settings.set("hazard.cap", " 0.5 ") == 0.5
    assert settings.get_as_string("robots.breakable") == "false"


@pytest.mark.parametrize(
    "key, raw",
    [
        ("env.grid.width", "wide"),
        ("env.grid.width", "0"),
        ("robots.breakable", "maybe"),
        ("hazard.cap", "1.5"),
        ("sim.scenario", "maze"),
        ("env.grid.dangervalues", "1:lava"),
        ("no.such.key", "1"),
    ],
)
def test_bad_values_leave_settings_untouched(key, raw):
    settings = Settings()
    before = settings.as_dict()
    with pytest.raises(ConfigError):
        settings.set(key, raw)
    assert settings.as_dict() == before


def test_update_is_atomic():
    settings = Settings()
    with pytest.raises(ConfigError):
        settings.update({"env.grid.width": "4", "env.grid.height": "-1"})
    assert settings.get_int("env.grid.width") == 10


def test_typed_getter_rejects_wrong_type():
    with pytest.raises(ConfigError):
        Settings().get_int("robots.breakable")


def test_min_max_dimension_order_checked():
    with pytest.raises(ConfigError):
        SimulationConfig(min_width=9, max_width=3).validate()


def test_agent_count_must_fit_the_grid():
    with pytest.raises(ConfigError):
        SimulationConfig(grid_width=2, grid_height=2, agent_count=5).validate()
    SimulationConfig(grid_width=2, grid_height=2, agent_count=4).validate()
    with pytest.raises(ConfigError):
        SimulationConfig(variable_grid_size=True, min_width=2, min_height=3, agent_count=7).validate()
    settings = make_settings(grid_width=3, grid_height=3, agent_count=2)
    with pytest.raises(ConfigError):
        settings.set("robots.count", "10")
    assert settings.get_int("robots.count") == 2


def test_update_from_env(monkeypatch):
    monkeypatch.setenv("COVSIM_ENV_GRID_WIDTH", "12")
    monkeypatch.setenv("COVSIM_ROBOTS_BREAKABLE", "no")
    settings = Settings().update_from_env()
    assert settings.get_int("env.grid.width") == 12
    assert settings.get_bool("robots.breakable") is False


def test_reload_reaches_registered_components():
    seen = []

    class Component:
        def reload_settings(self, settings):
            seen.append(settings.get_int("robots.count"))

    settings = make_settings(agent_count=2)
    component = Component()
    settings.register_reloadable(component)
    settings.register_reloadable(component)
    settings.set("robots.count", "3")
    settings.reload_settings()
    settings.unregister_reloadable(component)
    settings.reload_settings()
    assert seen == [3]


def test_export_commands_round_trip():
    source = make_settings(grid_width=6, breakable=False, policy_selector="external+random")
    target = Settings()
    for line in source.export_commands().splitlines():
        _, key, value = line.split(" ", 2)
        target.set(key, value.strip('"'))
    assert target.as_dict() == source.as_dict()
