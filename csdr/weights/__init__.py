"""Weight stores for local receptive fields.

Two backing layouts behind one capability interface (WeightStore):
    - DenseFieldWeights: explicit offset addressing; used by the sparse coder,
      which updates every candidate visible code per hidden unit
    - SparseMatrix: CSR rows per hidden unit with one-hot dot products and
      updates; used by the actor, which only touches the weight selected by
      the observed input code

Both keep every access O(receptive field) per hidden unit.
"""

from .base import WeightStore
from .dense import DenseFieldWeights
from .sparse_matrix import SparseMatrix

__all__ = ['WeightStore', 'DenseFieldWeights', 'SparseMatrix']
