#!/usr/bin/env python3
"""Evaluate a trained model two ways: directly in CoverageEnv, then as the
oracle of an ``external`` policy inside the full simulator."""
import argparse
import json
import os
from pathlib import Path
import sys

from stable_baselines3 import PPO

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))
from coverage_sim import Settings, Simulation, TrajectoryLogger
from coverage_sim.env import CoverageEnv
from coverage_sim.oracle import ModelOracle
from coverage_sim.policies import PolicyContext


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument('--policy', required=True)
    ap.add_argument('--grid', type=int, default=8)
    ap.add_argument('--scenario', choices=['coverage', 'pathplan'], default='coverage')
    ap.add_argument('--breakable', action='store_true')
    ap.add_argument('--max_steps', type=int, default=300)
    ap.add_argument('--runs', type=int, default=5)
    ap.add_argument('--selector', default='external+random', help='selector used inside the simulator')
    ap.add_argument('--frames', default='logs/policy_eval_episode.jsonl')
    ap.add_argument('--save', default='logs/policy_eval_summary.json')
    args = ap.parse_args()

    settings = Settings()
    settings.update({
        'env.grid.width': args.grid,
        'env.grid.height': args.grid,
        'sim.scenario': args.scenario,
        'robots.breakable': args.breakable,
        'autorun.max_steps_per_run': args.max_steps,
        'policy.selector': args.selector,
        'stats.multirun.batch_size': args.runs,
    })
    model = PPO.load(args.policy, device='cpu')

    env = CoverageEnv(settings=settings, max_steps=args.max_steps)
    obs, _ = env.reset(seed=0)
    cum_reward = 0.0
    info = {}
    for _ in range(args.max_steps):
        action, _ = model.predict(obs, deterministic=True)
        obs, reward, terminated, truncated, info = env.step(int(action))
        cum_reward += float(reward)
        if terminated or truncated:
            break

    oracle = ModelOracle(model)
    simulation = Simulation(settings)
    simulation.context = PolicyContext(
        settings,
        rng=simulation.rng,
        preprocessor_factory=simulation.scenario.make_preprocessor,
        oracle_factory=lambda _settings: oracle,
    )
    os.makedirs(os.path.dirname(args.frames) or '.', exist_ok=True)
    recorder = TrajectoryLogger(args.frames)
    sim_runs = []
    try:
        for index in range(args.runs):
            if index == 0:
                simulation.new_run()
            else:
                simulation.next_run()
            summary = simulation.run_episode(on_tick=recorder.refresh if index == 0 else None)
            sim_runs.append({
                'steps': summary.steps,
                'coverage': summary.coverage,
                'team_survivability': summary.team_survivability,
            })
    finally:
        recorder.dispose()
        simulation.close()

    result = {
        'policy': os.path.basename(args.policy),
        'env_steps': info.get('steps'),
        'env_coverage': info.get('coverage'),
        'env_broken': info.get('broken'),
        'cumulative_reward': cum_reward,
        'selector': args.selector,
        'simulator_runs': sim_runs,
    }
    os.makedirs(os.path.dirname(args.save) or '.', exist_ok=True)
    with open(args.save, 'w', encoding='utf-8') as sf:
        json.dump(result, sf, ensure_ascii=False, indent=2)
    print(json.dumps(result, ensure_ascii=False))


if __name__ == '__main__':
    main()
