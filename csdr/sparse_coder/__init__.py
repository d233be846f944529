"""Sparse coding engine: input CSDRs to a sparser hidden CSDR by explaining-away."""

from .coder import CoderVisibleLayer, SparseCoder

__all__ = ['CoderVisibleLayer', 'SparseCoder']
