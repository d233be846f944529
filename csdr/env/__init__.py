"""Toy categorical environments that supply observations and feedback codes."""

from .copy_task import CopyTaskEnv

__all__ = ['CopyTaskEnv']
