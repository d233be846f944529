"""Actor-critic decision layer with PAL experience replay."""

from .actor import Actor
from .history import HistoryRing, HistorySample

__all__ = ['Actor', 'HistoryRing', 'HistorySample']
