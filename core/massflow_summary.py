# massflow_summary.py

from __future__ import annotations
import logging
from typing import Mapping, Optional

import numpy as np

from config import MassflowConfig
from core.errors import MassflowNotComputedError
from core.massflow_result import MassflowResult, summarize_runs
from network.system import System
from network.system_massflow import check_sources, massflow

logger = logging.getLogger(__name__)

STATS_KEY = "massflow_stats"


def massflow_summary(system: System, input_masses: Mapping[str, Mapping[str, float]], n: Optional[int] = None,
                     montecarlo: Optional[bool] = None, reliability_scale: Optional[float] = None,
                     rng: Optional[np.random.Generator] = None, keep_samples: bool = False,
                     config: Optional[MassflowConfig] = None) -> MassflowResult:
    """
    Run `massflow` n times and reduce the runs into statistics. The system is not modified.

    Every call without an explicit `rng` draws from a new generator, so repeated calls
    give different Monte Carlo results.
    """
    config = config or MassflowConfig()
    n = config.n_runs if n is None else n
    montecarlo = config.montecarlo if montecarlo is None else montecarlo
    reliability_scale = config.reliability_scale if reliability_scale is None else reliability_scale
    if n < 1:
        raise ValueError(f"Number of runs must be at least 1, got {n}.")

    check_sources(system, input_masses)
    if rng is None:
        rng = np.random.default_rng()

    runs = [massflow(system, input_masses, montecarlo=montecarlo, reliability_scale=reliability_scale,
                     rng=rng, config=config)
            for _ in range(n)]
    result = summarize_runs(runs, config.quantiles, montecarlo, keep_samples=keep_samples)
    logger.debug("Summarized %d runs for system %s.", n, system.properties.get("ID"))
    return result


def massflow_summary_inplace(system: System, input_masses: Mapping[str, Mapping[str, float]],
                             n: Optional[int] = None, **kwargs) -> MassflowResult:
    """Like `massflow_summary`, attaches the result to system.properties["massflow_stats"]."""
    result = massflow_summary(system, input_masses, n=n, **kwargs)
    system.properties[STATS_KEY] = result
    system.properties.pop("massflow_error", None)
    return result


def _attached_stats(system: System) -> MassflowResult:
    result = system.properties.get(STATS_KEY)
    if result is None:
        raise MassflowNotComputedError(
            "Mass-flow statistics are not computed yet. Run massflow_summary_inplace first.")
    return result


def scale_massflows_inplace(system: System, factor: float) -> System:
    """Multiply every mass-flow statistic of `system` by `factor`."""
    _attached_stats(system).scale(factor)
    return system


def scale_massflows(system: System, factor: float) -> System:
    """Return a copy of `system` with scaled statistics; the original is left untouched."""
    _attached_stats(system)
    scaled = system.copy()
    scaled.properties[STATS_KEY].scale(factor)
    return scaled
