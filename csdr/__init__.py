"""CSDR engines: online learning over categorical sparse distributed representations.

This package contains two tightly coupled engines that consume and produce
CSDRs (one integer code per grid column):
    - SparseCoder: compresses input CSDRs into a sparser hidden CSDR by
      iterative explaining-away
    - Actor: maps input CSDRs to action CSDRs and improves its policy from
      feedback codes via experience replay and persistent advantage learning

Architecture layers (strict one-way dependency):
    scripts/ → csdr/{sparse_coder,actor,env}/ → csdr/weights/ → csdr/utils/

Key invariants:
    - Every CSDR holds exactly one code in [0, depth) per column
    - Grids are addressed row-major: index = y * width + x
    - All weights are float32; persisted state is little-endian
    - Randomness comes only from a seeded ComputeSystem
    - YAML-only configs
"""

__version__ = "0.3.0"
