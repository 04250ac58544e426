import logging
import sys

import numpy as np
import pytest

from coverage_sim import Actuator, Agent, Sensor, make_settings
from coverage_sim.errors import ConfigError, OracleError
from coverage_sim.oracle import CallableOracle, SubprocessOracle, oracle_from_settings
from coverage_sim.policies import (
    ExternalPolicy,
    PolicyContext,
    QLearningPolicy,
    QTable,
    RandomPolicy,
    available_policies,
    make_policy,
    parse_selector,
)
from coverage_sim.preprocess import GoalVectorPreprocessor, LocalWindowPreprocessor


def _wire(world, agent_id=0, x=0, y=0):
    agent = Agent(agent_id, x=x, y=y)
    world.add_agent(agent)
    return Sensor(world, agent), Actuator(world, agent, world.settings, rng=np.random.default_rng(agent_id))


@pytest.mark.parametrize(
    "selector, expected",
    [
        ("random", (None, "random")),
        (" External+QLearning ", ("external", "qlearning")),
        ("+random", (None, "random")),
        ("", (None, "")),
        (None, (None, "")),
    ],
)
def test_parse_selector(selector, expected):
    assert parse_selector(selector) == expected


def test_registered_names():
    bases, metas = available_policies()
    assert {"random", "qlearning", "q", "dql", "external"} <= set(bases)
    assert "external" in metas


def test_unknown_base_falls_back_to_qlearning(blank_world, caplog):
    world = blank_world(3, 3)
    sensor, actuator = _wire(world)
    context = PolicyContext(world.settings, rng=np.random.default_rng(0))
    with caplog.at_level(logging.WARNING):
        policy = make_policy("teleport", sensor, actuator, context)
    assert isinstance(policy, QLearningPolicy)
    assert "teleport" in caplog.text


def test_unknown_meta_is_ignored(blank_world, caplog):
    world = blank_world(3, 3)
    sensor, actuator = _wire(world)
    context = PolicyContext(world.settings, rng=np.random.default_rng(0))
    with caplog.at_level(logging.WARNING):
        policy = make_policy("sandbox+random", sensor, actuator, context)
    assert isinstance(policy, RandomPolicy)
    assert "sandbox" in caplog.text


def test_random_policy_acts_once_per_step(blank_world):
    world = blank_world(4, 4)
    sensor, actuator = _wire(world, x=1, y=1)
    policy = RandomPolicy(sensor, actuator, PolicyContext(world.settings, rng=np.random.default_rng(3)))
    for _ in range(20):
        policy.step()
    assert sum(c.cover_count for c in world.iter_cells()) == 20


def test_qtable_keys_round_features():
    table = QTable()
    a = table.values(np.array([0.1, 0.2000001]))
    b = table.values(np.array([0.1, 0.2]))
    assert a is b
    assert len(table) == 1


def test_qlearning_shares_table_and_decays_epsilon_once_per_run(blank_world):
    world = blank_world(4, 4, qlearning_epsilon=0.5, qlearning_epsilon_decay=0.5, qlearning_epsilon_min=0.1)
    context = PolicyContext(world.settings, rng=np.random.default_rng(0))
    policies = []
    for i in range(3):
        sensor, actuator = _wire(world, agent_id=i, x=i, y=0)
        policy = QLearningPolicy(sensor, actuator, context)
        world.agents[i].policy = policy
        policies.append(policy)
    assert policies[0].table is policies[2].table

    world.init()
    assert policies[1].epsilon == pytest.approx(0.25)
    world.init()
    world.init()
    assert policies[0].epsilon == pytest.approx(0.1)


def test_qlearning_epsilon_schedule_survives_unrelated_reload(blank_world):
    world = blank_world(4, 4, qlearning_epsilon=0.5, qlearning_epsilon_decay=0.5, qlearning_epsilon_min=0.0)
    context = PolicyContext(world.settings, rng=np.random.default_rng(0))
    sensor, actuator = _wire(world)
    policy = QLearningPolicy(sensor, actuator, context)
    world.agents[0].policy = policy
    for _ in range(3):
        world.init()
    assert policy.epsilon == pytest.approx(0.0625)

    world.settings.set("autorun.stepdelay", "5")
    world.reload_settings(world.settings)
    assert policy.epsilon == pytest.approx(0.0625)

    world.settings.set("policy.qlearning.epsilon", "0.3")
    world.reload_settings(world.settings)
    assert policy.epsilon == pytest.approx(0.3)


def test_qlearning_learns_new_cell_bonus(blank_world):
    world = blank_world(3, 1, qlearning_epsilon=0.0, qlearning_alpha=1.0, qlearning_gamma=0.0)
    context = PolicyContext(world.settings, rng=np.random.default_rng(0))
    agent = Agent(0)
    world.add_agent(agent)
    sensor = Sensor(world, agent)
    actuator = Actuator(world, agent, world.settings, reward_fn=lambda event: 1.0 if event.prior_cover_count == 0 else -1.0)
    policy = QLearningPolicy(sensor, actuator, context)
    obs = policy.preprocessor.featurize(sensor)
    policy.step()
    action = actuator.last_action
    assert policy.table.values(obs)[int(action)] == pytest.approx(1.0)


def test_external_policy_uses_oracle_and_inner_on_abstention(blank_world):
    world = blank_world(4, 4)
    answers = iter([0, None, 4, None])
    oracle = CallableOracle(lambda obs: next(answers))
    context = PolicyContext(world.settings, rng=np.random.default_rng(0), oracle_factory=lambda settings: oracle)
    sensor, actuator = _wire(world, x=1, y=1)
    inner = RandomPolicy(sensor, actuator, context)
    policy = ExternalPolicy(sensor, actuator, context, inner=inner)
    for _ in range(4):
        policy.step()
    assert policy.decisions == 2
    assert policy.abstentions == 2
    assert sum(c.cover_count for c in world.iter_cells()) == 4
    assert context.get_oracle() is oracle


def test_external_standalone_covers_when_oracle_abstains(blank_world):
    world = blank_world(3, 3)
    context = PolicyContext(world.settings, oracle_factory=lambda settings: CallableOracle(lambda obs: None))
    sensor, actuator = _wire(world, x=1, y=1)
    policy = make_policy("external", sensor, actuator, context)
    policy.step()
    assert sensor.location == (1, 1)
    assert world.cells[1][1].cover_count == 1


def test_meta_selector_wraps_base(blank_world):
    world = blank_world(3, 3)
    context = PolicyContext(world.settings, oracle_factory=lambda settings: CallableOracle(lambda obs: None))
    sensor, actuator = _wire(world)
    policy = make_policy("external+random", sensor, actuator, context)
    assert isinstance(policy, ExternalPolicy)
    assert isinstance(policy.inner, RandomPolicy)


def test_oracle_from_settings_requires_a_source():
    with pytest.raises(ConfigError):
        oracle_from_settings(make_settings())


def test_subprocess_oracle_round_trip(tmp_path):
    script = tmp_path / "oracle.py"
    script.write_text(
        "import json, sys\n"
        "for line in sys.stdin:\n"
        "    msg = json.loads(line)\n"
        "    if msg['type'] == 'choose':\n"
        "        print(json.dumps({'action': 1 if sum(msg['obs']) > 0 else None}), flush=True)\n"
        "    elif msg['type'] == 'close':\n"
        "        break\n"
    )
    oracle = SubprocessOracle([sys.executable, str(script)])
    try:
        assert oracle.choose(np.array([0.5, 0.0])) == 1
        oracle.observe(np.zeros(2), 1.0, False)
        assert oracle.choose(np.zeros(2)) is None
    finally:
        oracle.close()
    assert oracle.proc.poll() is not None


def test_subprocess_oracle_reply_deadline(tmp_path):
    script = tmp_path / "silent_oracle.py"
    script.write_text("import sys, time\nsys.stdin.readline()\ntime.sleep(30)\n")
    oracle = SubprocessOracle([sys.executable, str(script)], reply_timeout=0.5)
    try:
        with pytest.raises(OracleError):
            oracle.choose(np.zeros(2))
        assert oracle.proc.poll() is not None
        with pytest.raises(OracleError):
            oracle.choose(np.zeros(2))
    finally:
        oracle.close()


def test_subprocess_oracle_missing_binary():
    with pytest.raises(OracleError):
        SubprocessOracle(["/nonexistent/oracle-binary"])


def test_local_window_features(blank_world):
    world = blank_world(3, 3, hazard_cap=0.2)
    world.cells[0][1].cover_count = 1
    world.cells[2][1].hazard_probability = 0.2
    sensor, _ = _wire(world, x=1, y=1)
    _wire(world, agent_id=1, x=1, y=2)
    pre = LocalWindowPreprocessor(radius=1, hazard_cap=0.2)
    features = pre.featurize(sensor).reshape(3, 3, 4)
    # rows are dy = -1..1, columns dx = -1..1
    assert features[1, 0, 1] == 1.0
    assert features[1, 2, 2] == 1.0
    assert features[2, 1, 3] == 1.0
    assert features[1, 1, 3] == 0.0
    assert pre.size == 36


def test_goal_vector_features(blank_world):
    world = blank_world(5, 5)
    sensor, _ = _wire(world, x=0, y=0)
    pre = GoalVectorPreprocessor(LocalWindowPreprocessor(), lambda: (4, 2))
    features = pre.featurize(sensor)
    assert features.shape == (pre.size,)
    assert features[-2:] == pytest.approx([1.0, 0.5])
