#!/usr/bin/env python3
import argparse
import os

import torch
from stable_baselines3 import PPO
from stable_baselines3.common.vec_env import DummyVecEnv
from stable_baselines3.common.logger import configure

from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))
from coverage_sim import Settings
from coverage_sim.env import CoverageEnv


def get_device():
    if torch.backends.mps.is_available():
        return 'mps'
    if torch.cuda.is_available():
        return 'cuda'
    return 'cpu'


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument('--grid', type=int, default=8)
    ap.add_argument('--scenario', choices=['coverage', 'pathplan'], default='coverage')
    ap.add_argument('--breakable', action='store_true')
    ap.add_argument('--max_steps', type=int, default=300)
    ap.add_argument('--timesteps', type=int, default=200000)
    ap.add_argument('--seed', type=int, default=0)
    ap.add_argument('--save', default='models/coverage_ppo.zip')
    ap.add_argument('--logdir', default='logs/coverage_rl')
    args = ap.parse_args()

    device = get_device()
    settings = Settings()
    settings.update({
        'env.grid.width': args.grid,
        'env.grid.height': args.grid,
        'sim.scenario': args.scenario,
        'robots.breakable': args.breakable,
    })

    def make_env():
        def _init():
            return CoverageEnv(settings=settings, max_steps=args.max_steps, seed=args.seed)
        return _init

    env = DummyVecEnv([make_env()])

    model = PPO(
        'MlpPolicy', env,
        verbose=1,
        n_steps=1024,
        batch_size=256,
        gamma=0.99,
        learning_rate=3e-4,
        ent_coef=0.01,
        device=device,
    )

    os.makedirs(args.logdir, exist_ok=True)
    logger = configure(args.logdir, ["stdout"])
    model.set_logger(logger)

    model.learn(total_timesteps=args.timesteps)
    os.makedirs(os.path.dirname(args.save) or '.', exist_ok=True)
    model.save(args.save)
    print(f"Saved model to {args.save}")


if __name__ == '__main__':
    main()
