"""Copy-task runner: sparse coder → actor → environment loop.

Runs the two engines end to end on CopyTaskEnv:
    1. Load and validate the run config (copy_task.v1)
    2. Set up logging, the ComputeSystem and both engines
    3. Loop for `steps` steps:
        - Sparse coder encodes the observation (learns if enabled)
        - Actor emits an action CSDR from the hidden CSDR
        - Actor records (hidden, action, feedback of the previous action)
          and replays history
        - Environment scores the action and returns the next observation
    4. Log running reward and per-phase timings every log_interval steps
    5. Save both engines atomically and write summary.yaml

Refactored architecture:
    - run_copy_task_main(config_path, ...) → dict
        * Callable function (used by integration tests)
        * Returns: {final_reward, mean_reward, coder_path, actor_path, summary_path}
    - CLI entry point: if __name__ == "__main__"

CLI:
    python scripts/run_copy_task.py --config configs/copy_task_v1.yaml
    python scripts/run_copy_task.py --config configs/copy_task_v1.yaml \\
                                    --steps 2000 --seed 3 --output outputs/run3

Output structure:
    <output_dir>/
        sparse_coder.bin
        actor.bin
        summary.yaml
"""

import argparse
import logging
from collections import deque
from typing import Any, Dict, Optional

import numpy as np

from csdr.actor import Actor
from csdr.env import CopyTaskEnv
from csdr.sparse_coder import SparseCoder
from csdr.utils import fs, grid, hashing, validators
from csdr.utils.compute import ComputeSystem
from csdr.utils.logging_config import install_excepthook, pop_context, push_context, setup_logging, shutdown
from csdr.utils.profiler import TimerAccumulator

logger = logging.getLogger(__name__)


def run_copy_task_main(
    config_path: str,
    steps: Optional[int] = None,
    seed: Optional[int] = None,
    output_dir: Optional[str] = None,
    log_level: Optional[str] = None,
    configure_logging: bool = True,
) -> Dict[str, Any]:
    """Run the copy task.

    Parameters
    ----------
    config_path : str
        Path to a copy_task.v1 YAML config
    steps : Optional[int]
        Overrides cfg.steps
    seed : Optional[int]
        Overrides cfg.seed
    output_dir : Optional[str]
        Overrides cfg.output_dir
    log_level : Optional[str]
        Overrides cfg.logging.log_level
    configure_logging : bool
        Call setup_logging(); tests leave logging to pytest

    Returns
    -------
    Dict[str, Any]
        Results dict with:
            - final_reward: float (mean reward over the last log window)
            - mean_reward: float (mean reward over the whole run)
            - steps: int
            - coder_path, actor_path, summary_path: str

    Raises
    ------
    FileNotFoundError
        If config_path doesn't exist
    ValueError
        If the config or an override is invalid
    """
    cfg = validators.load_run_config(config_path)
    if any(v is not None for v in (steps, seed, output_dir, log_level)):
        data = cfg.model_dump(by_alias=True)
        if steps is not None:
            data['steps'] = steps
        if seed is not None:
            data['seed'] = seed
        if output_dir is not None:
            data['output_dir'] = output_dir
        if log_level is not None:
            data['logging']['log_level'] = log_level
        cfg = validators.CopyTaskRunConfig.model_validate(data)

    if configure_logging:
        setup_logging(
            cfg.logging.log_level,
            cfg.logging.log_file,
            json=cfg.logging.json_format,
            color=cfg.logging.color
        )

    out_path = fs.ensure_dir(cfg.output_dir)
    push_context(run="copy_task", seed=cfg.seed)
    logger.info(f"Starting copy task: {config_path} ({cfg.steps} steps, seed={cfg.seed})")

    try:
        with ComputeSystem(cfg.seed, cfg.dispatch.num_workers, cfg.dispatch.batch_size) as cs:
            coder = SparseCoder.from_config(cs, cfg.coder)
            actor = Actor.from_config(cs, cfg.actor)
            env = CopyTaskEnv.from_config(cfg.env, actor.hidden_size, rng=cs.next_stream())

            timers = {
                name: TimerAccumulator(name)
                for name in ("coder_step", "actor_activate", "actor_step", "env_step")
            }
            window = deque(maxlen=cfg.log_interval)
            total_reward = 0.0

            obs = env.reset()
            # No action precedes the first step; its feedback is never rewarded
            feedback = np.zeros(grid.num_columns(actor.hidden_size), dtype=np.int32)

            for t in range(cfg.steps):
                with timers["coder_step"].measure():
                    hidden = coder.step(cs, [obs], learn_enabled=cfg.learn_enabled).copy()
                with timers["actor_activate"].measure():
                    action = actor.activate(cs, [hidden]).copy()
                with timers["actor_step"].measure():
                    actor.step(cs, [hidden], action, feedback, learn_enabled=cfg.learn_enabled)
                encoded = obs
                with timers["env_step"].measure():
                    obs, feedback, reward, info = env.step(action)

                window.append(reward)
                total_reward += reward

                if (t + 1) % cfg.log_interval == 0:
                    logger.info(
                        "step %d: reward=%.3f, recon_error=%d, history=%d, timings(ms)=%s",
                        t + 1, float(np.mean(window)), coder.reconstruction_error([encoded]),
                        actor.history_size,
                        {name: round(acc.mean() * 1000.0, 3) for name, acc in timers.items()}
                    )
                    for acc in timers.values():
                        acc.reset()

        coder_path = out_path / "sparse_coder.bin"
        actor_path = out_path / "actor.bin"
        coder.save(coder_path)
        actor.save(actor_path)

        final_reward = float(np.mean(window)) if window else 0.0
        mean_reward = total_reward / cfg.steps

        summary_path = out_path / "summary.yaml"
        fs.atomic_yaml_dump({
            'schema': 'copy_task_summary.v1',
            'config': str(config_path),
            'steps': cfg.steps,
            'seed': cfg.seed,
            'final_reward': final_reward,
            'mean_reward': mean_reward,
            'artifacts': {
                'sparse_coder': {'path': str(coder_path), 'sha256': hashing.sha256_file(coder_path)},
                'actor': {'path': str(actor_path), 'sha256': hashing.sha256_file(actor_path)},
            },
            'params': validators.flatten_config(cfg),
        }, summary_path)

        logger.info(f"Copy task complete: final_reward={final_reward:.3f}, artifacts in {out_path}")
    finally:
        pop_context(["run", "seed"])

    return {
        'final_reward': final_reward,
        'mean_reward': mean_reward,
        'steps': cfg.steps,
        'coder_path': str(coder_path),
        'actor_path': str(actor_path),
        'summary_path': str(summary_path),
    }


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run the sparse coder + actor loop on the copy task"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="configs/copy_task_v1.yaml",
        help="Path to copy_task.v1 run config",
    )
    parser.add_argument(
        "--steps",
        type=int,
        default=None,
        help="Override number of environment steps",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override root seed",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Override output directory",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level",
    )

    args = parser.parse_args()
    install_excepthook()

    try:
        result = run_copy_task_main(
            config_path=args.config,
            steps=args.steps,
            seed=args.seed,
            output_dir=args.output,
            log_level=args.log_level,
        )
    finally:
        shutdown()

    print("\n=== Copy Task Complete ===")
    print(f"Final reward: {result['final_reward']:.3f}")
    print(f"Mean reward: {result['mean_reward']:.3f}")
    print(f"Summary: {result['summary_path']}")


if __name__ == "__main__":
    main()
