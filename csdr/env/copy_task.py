"""CopyTaskEnv: categorical "copy the cue" environment.

Small episodic-free task used to drive the coder → actor loop end to end:
    - Observation: CSDR over a (w, h, depth) grid, codes drawn uniformly;
      each observation is held for hold_steps steps before a new one is drawn
    - Action: CSDR over the actor's (aw, ah, adepth) grid
    - Feedback: the correct action per action column, i.e. the observation
      code at the projected position folded into the action depth
      (code % adepth)
    - Reward: fraction of action columns matching the feedback

Public API:
    env = CopyTaskEnv(obs_size=(4, 4, 16), action_size=(4, 4, 16), rng=cs.next_stream())
    obs = env.reset()
    next_obs, feedback_cs, reward, info = env.step(action_cs)

The feedback returned by step() judges the action just taken on the
observation that was current before the call.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from csdr.utils import grid, validators
from csdr.utils.validators import CopyTaskEnvConfig

logger = logging.getLogger(__name__)


class CopyTaskEnv:
    """Copy-the-cue environment over categorical grids.

    Attributes
    ----------
    obs_size : Tuple[int, int, int]
        Observation extent
    action_size : Tuple[int, int, int]
        Action extent
    hold_steps : int
        Steps each observation stays current
    """

    def __init__(
        self,
        obs_size: Sequence[int],
        action_size: Sequence[int],
        hold_steps: int = 1,
        rng: Optional[np.random.Generator] = None
    ):
        cfg = CopyTaskEnvConfig(size=tuple(obs_size), hold_steps=hold_steps)
        self.obs_size = cfg.size
        self.action_size = tuple(int(v) for v in action_size)
        if any(v < 1 for v in self.action_size) or len(self.action_size) != 3:
            raise ValueError(f"Action size must be three positive ints, got {tuple(action_size)}")
        self.hold_steps = cfg.hold_steps
        self._rng = rng if rng is not None else np.random.default_rng(0)

        # Observation column read by each action column
        action_to_obs = grid.projection_ratios(self.action_size, self.obs_size)
        source = []
        for column in range(grid.num_columns(self.action_size)):
            x = column % self.action_size[0]
            y = column // self.action_size[0]
            px, py = grid.project((x, y), action_to_obs)
            px = min(max(px, 0), self.obs_size[0] - 1)
            py = min(max(py, 0), self.obs_size[1] - 1)
            source.append(grid.index2((px, py), self.obs_size[0]))
        self._source_columns = np.asarray(source, dtype=np.int64)

        self._obs = np.zeros(grid.num_columns(self.obs_size), dtype=np.int32)
        self._step_count = 0

    @classmethod
    def from_config(
        cls,
        cfg: CopyTaskEnvConfig,
        action_size: Sequence[int],
        rng: Optional[np.random.Generator] = None
    ) -> 'CopyTaskEnv':
        return cls(cfg.size, action_size, cfg.hold_steps, rng)

    def _sample_obs(self) -> None:
        self._obs[:] = self._rng.integers(0, self.obs_size[2], size=self._obs.size)

    def correct_action(self, obs_cs: np.ndarray) -> np.ndarray:
        """Action CSDR that scores reward 1 on obs_cs."""
        obs_cs = validators.check_csdr(obs_cs, self.obs_size, "obs_cs")
        return (obs_cs[self._source_columns] % self.action_size[2]).astype(np.int32)

    def reset(self) -> np.ndarray:
        """Draw the first observation. Returns a copy of it."""
        self._step_count = 0
        self._sample_obs()
        logger.debug("CopyTaskEnv reset: obs=%s, action=%s", self.obs_size, self.action_size)
        return self._obs.copy()

    def step(self, action_cs: np.ndarray) -> Tuple[np.ndarray, np.ndarray, float, Dict[str, Any]]:
        """Score an action against the current observation and advance.

        Returns
        -------
        next_obs : np.ndarray
            Observation for the next step
        feedback_cs : np.ndarray
            Correct action for the observation that was just acted on
        reward : float
            Fraction of matching action columns, in [0, 1]
        info : dict
            {'step', 'matches', 'new_observation'}

        Raises
        ------
        CSDRShapeError
            If action_cs does not match the action grid
        """
        action_cs = validators.check_csdr(action_cs, self.action_size, "action_cs")
        feedback_cs = self.correct_action(self._obs)
        matches = int(np.count_nonzero(action_cs == feedback_cs))
        reward = matches / action_cs.size

        self._step_count += 1
        new_observation = self._step_count % self.hold_steps == 0
        if new_observation:
            self._sample_obs()

        info = {'step': self._step_count, 'matches': matches, 'new_observation': new_observation}
        return self._obs.copy(), feedback_cs, float(reward), info

    @property
    def observation(self) -> np.ndarray:
        return self._obs.copy()

    def __repr__(self) -> str:
        return f"CopyTaskEnv(obs={self.obs_size}, action={self.action_size}, hold_steps={self.hold_steps})"
