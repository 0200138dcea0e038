from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# fn(rows, cols) -> values; rows is (r, 1), cols is (1, w). Must be pure:
# a cell's value may only depend on its own indices and on read-only inputs.
CellFn = Callable[[np.ndarray, np.ndarray], np.ndarray]


@dataclass(frozen=True)
class GridKernel:
    name: str
    height: int
    width: int
    fn: CellFn
    dtype: Any = np.float64


class KernelRunner:
    """Dispatches grid kernels row-block by row-block.

    Each block is one vectorized call of the kernel function. With
    workers > 1 the blocks run on a thread pool (numpy releases the GIL in
    its inner loops). `run` returns only once every block has been written,
    so consecutive calls form the stage barriers of a grid pipeline.
    """

    def __init__(self, workers: int = 1, block_rows: int = 32) -> None:
        if workers < 1 or block_rows < 1:
            raise ValueError("workers and block_rows must be >= 1")
        self.workers = workers
        self.block_rows = block_rows

    def _blocks(self, height: int) -> List[Tuple[int, int]]:
        return [(r0, min(r0 + self.block_rows, height)) for r0 in range(0, height, self.block_rows)]

    def run(self, kernel: GridKernel) -> np.ndarray:
        t0 = time.perf_counter()
        out = np.empty((kernel.height, kernel.width), dtype=kernel.dtype)
        cols = np.arange(kernel.width)[None, :]

        def fill(block: Tuple[int, int]) -> None:
            r0, r1 = block
            rows = np.arange(r0, r1)[:, None]
            dst = out[r0:r1]
            dst[...] = np.broadcast_to(kernel.fn(rows, cols), dst.shape)

        blocks = self._blocks(kernel.height)
        if self.workers > 1 and len(blocks) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                # result() re-raises worker exceptions and waits for every block
                for fut in [pool.submit(fill, b) for b in blocks]:
                    fut.result()
        else:
            for b in blocks:
                fill(b)

        logger.debug(
            "kernel %s %dx%d: %.2f ms",
            kernel.name,
            kernel.height,
            kernel.width,
            (time.perf_counter() - t0) * 1e3,
        )
        return out
