from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class RenderComplete:
    token: int          # render generation
    elapsed: float      # seconds from dispatch to last strip
    precision_bits: int
    max_iterations: int
    sample_step: int
    backend: str
    mode: str
    strips: int
    failed: int


@dataclass(frozen=True)
class RenderPlan:
    token: int
    width: int
    height: int
    strips: Tuple[Tuple[int, int], ...]   # (start_row, row_count)
    precision_bits: int
    max_iterations: int
    sample_step: int
    backend: str
    mode: str
