"""Robust estimation over many independent correspondence sets, in parallel with dask.

Each estimation call owns its sampler and buffers, so calls sharing one engine run without cross-talk on any dask
scheduler.
"""

from typing import Any, List, Sequence, Tuple

import dask
from dask.delayed import Delayed, delayed

import rigpose.utils.logger as logger_utils
from rigpose.common.ransac_report import RansacReport
from rigpose.estimator.ransac import Ransac

logger = logger_utils.get_logger()


def create_computation_graph(
    ransac: Ransac, problems: Sequence[Tuple[Sequence[Any], Sequence[Any]]]
) -> List[Delayed]:
    """Creates one delayed estimation task per correspondence set.

    Args:
        ransac: robust estimation engine.
        problems: (points1, points2) pairs of index-aligned correspondences.

    Returns:
        Delayed RansacReport for each problem.
    """
    # Correspondence sequences are passed as opaque literals, dask does not need to look inside them.
    return [
        delayed(ransac.estimate)(delayed(points1, traverse=False), delayed(points2, traverse=False))
        for points1, points2 in problems
    ]


def estimate_batch(
    ransac: Ransac, problems: Sequence[Tuple[Sequence[Any], Sequence[Any]]], scheduler: str = "threads"
) -> List[RansacReport]:
    """Runs robust estimation for every correspondence set.

    Args:
        ransac: robust estimation engine.
        problems: (points1, points2) pairs of index-aligned correspondences.
        scheduler: dask scheduler, e.g. "threads", "processes" or "single-threaded".

    Returns:
        Reports in the order of `problems`.
    """
    if len(problems) == 0:
        return []

    delayed_reports = create_computation_graph(ransac, problems)
    with dask.config.set(scheduler=scheduler):
        reports = dask.compute(*delayed_reports)

    num_success = sum(report.success for report in reports)
    logger.info("[BATCH] %d / %d estimations succeeded.", num_success, len(reports))
    return list(reports)
