# massflow_result.py

from __future__ import annotations
import copy, hashlib
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from network.system_massflow import MassflowRun

CATEGORIES = ("entered", "recovered", "recovery_ratio", "lost", "lost_ratio")
PATHWAY_CATEGORIES = ("lost", "lost_ratio")


def statistic_names(quantiles: Sequence[float]) -> Tuple[str, ...]:
    return ("mean", "sd") + tuple(f"q_{q:g}" for q in quantiles)


class MassflowResult:

    """
    Statistics of repeated mass-flow runs of one system.

    Five categories, each a numpy array with the statistic on the last axis:
      - entered, recovered, recovery_ratio: (substances, statistics)
      - lost, lost_ratio: (substances, pathways, statistics)

    Next to the categories the result keeps the breakdowns of the runs:
      - recovered_by: (destinations, substances, statistics), a destination being a sink
        technology's name or an output product nothing consumes
      - lost_by_tech: (loss_sources, substances, statistics), a loss source being a
        (technology name, pathway) pair

    Statistic names are "mean", "sd" and "q_<quantile>".
    """

    def __init__(self, substances: Sequence[str], pathways: Sequence[str], statistics: Sequence[str],
                 stats: Dict[str, np.ndarray], n: int, montecarlo: bool,
                 samples: Optional[Dict[str, np.ndarray]] = None,
                 destinations: Sequence[str] = (), recovered_by: Optional[np.ndarray] = None,
                 loss_sources: Sequence[Tuple[str, str]] = (), lost_by_tech: Optional[np.ndarray] = None):
        self.substances = tuple(substances)
        self.pathways = tuple(pathways)
        self.statistics = tuple(statistics)
        self.stats = {k: np.asarray(stats[k], dtype=float) for k in CATEGORIES}
        self.n = n
        self.montecarlo = montecarlo
        self.samples = samples

        shape = (len(self.substances), len(self.statistics))
        self.destinations = tuple(destinations)
        self.recovered_by = (np.zeros((0,) + shape) if recovered_by is None
                             else np.asarray(recovered_by, dtype=float))
        self.loss_sources = tuple(tuple(k) for k in loss_sources)
        self.lost_by_tech = (np.zeros((0,) + shape) if lost_by_tech is None
                             else np.asarray(lost_by_tech, dtype=float))

    # ----- mapping interface -----

    def __len__(self) -> int:
        return len(self.stats)

    def __getitem__(self, category: str) -> np.ndarray:
        return self.stats[category]

    def __iter__(self) -> Iterator[str]:
        return iter(self.stats)

    def keys(self):
        return self.stats.keys()

    def items(self):
        return self.stats.items()

    def value(self, category: str, substance: str, statistic: str = "mean", pathway: Optional[str] = None) -> float:
        i = self.substances.index(substance)
        k = self.statistics.index(statistic)
        if category in PATHWAY_CATEGORIES:
            if pathway is None:
                return float(self.stats[category][i, :, k].sum())
            return float(self.stats[category][i, self.pathways.index(pathway), k])
        return float(self.stats[category][i, k])

    def recovered_at(self, destination: str, substance: str, statistic: str = "mean") -> float:
        d = self.destinations.index(destination)
        return float(self.recovered_by[d, self.substances.index(substance), self.statistics.index(statistic)])

    def lost_at(self, tech_name: str, pathway: str, substance: str, statistic: str = "mean") -> float:
        j = self.loss_sources.index((tech_name, pathway))
        return float(self.lost_by_tech[j, self.substances.index(substance), self.statistics.index(statistic)])

    # ----- scaling -----

    def scale(self, factor: float) -> "MassflowResult":
        """Multiply every statistic (and kept samples) by `factor` in place."""
        for k in self.stats:
            self.stats[k] *= factor
        self.recovered_by *= factor
        self.lost_by_tech *= factor
        if self.samples is not None:
            for k in self.samples:
                self.samples[k] *= factor
        return self

    def copy(self) -> "MassflowResult":
        return copy.deepcopy(self)

    def scaled(self, factor: float) -> "MassflowResult":
        return self.copy().scale(factor)

    # ----- comparison & export -----

    def fingerprint(self) -> str:
        h = hashlib.sha256()
        h.update(repr((self.substances, self.pathways, self.statistics,
                       self.destinations, self.loss_sources)).encode("utf-8"))
        for k in CATEGORIES:
            h.update(np.ascontiguousarray(self.stats[k]).tobytes())
        h.update(np.ascontiguousarray(self.recovered_by).tobytes())
        h.update(np.ascontiguousarray(self.lost_by_tech).tobytes())
        return h.hexdigest()

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, MassflowResult):
            return NotImplemented
        return (self.substances == other.substances and self.pathways == other.pathways
                and self.statistics == other.statistics
                and self.destinations == other.destinations and self.loss_sources == other.loss_sources
                and all(np.array_equal(self.stats[k], other.stats[k]) for k in CATEGORIES)
                and np.array_equal(self.recovered_by, other.recovered_by)
                and np.array_equal(self.lost_by_tech, other.lost_by_tech))

    __hash__ = None

    def to_records(self) -> List[Dict[str, Any]]:
        """
        Flat rows (category, substance, pathway, destination, statistic, value) for tabular
        export. Breakdown rows use the categories "recovered_by" and "lost_by_tech".
        """
        rows = []

        def add(category, substance, pathway, destination, values):
            for k, st in enumerate(self.statistics):
                rows.append(dict(category=category, substance=substance, pathway=pathway,
                                 destination=destination, statistic=st, value=float(values[k])))

        for category, arr in self.stats.items():
            for i, s in enumerate(self.substances):
                if category in PATHWAY_CATEGORIES:
                    for j, pw in enumerate(self.pathways):
                        add(category, s, pw, None, arr[i, j])
                else:
                    add(category, s, None, None, arr[i])
        for d, dest in enumerate(self.destinations):
            for i, s in enumerate(self.substances):
                add("recovered_by", s, None, dest, self.recovered_by[d, i])
        for j, (tech_name, pw) in enumerate(self.loss_sources):
            for i, s in enumerate(self.substances):
                add("lost_by_tech", s, pw, tech_name, self.lost_by_tech[j, i])
        return rows

    def __repr__(self) -> str:
        return (f"MassflowResult(n={self.n}, montecarlo={self.montecarlo}, substances={list(self.substances)}, "
                f"pathways={list(self.pathways)}, destinations={list(self.destinations)})")


def _reduce(samples: np.ndarray, quantiles: Sequence[float]) -> np.ndarray:
    """Reduce along the run axis (0); statistics end up on the last axis."""
    n = samples.shape[0]
    mean = samples.mean(axis=0)
    sd = samples.std(axis=0, ddof=1) if n > 1 else np.zeros_like(mean)
    parts = [mean, sd]
    if len(quantiles):
        qs = np.quantile(samples, list(quantiles), axis=0)
        parts.extend(qs[i] for i in range(len(quantiles)))
    return np.stack(parts, axis=-1)


def _stack_breakdown(runs: Sequence[MassflowRun], attr: str) -> Tuple[list, np.ndarray]:
    """(keys, samples of shape (runs, keys, substances)); keys missing in a run count as zero."""
    keys: list = []
    for r in runs:
        for key in getattr(r, attr):
            if key not in keys:
                keys.append(key)
    n_subs = len(runs[0].substances)
    samples = np.zeros((len(runs), len(keys), n_subs))
    for i, r in enumerate(runs):
        by = getattr(r, attr)
        for j, key in enumerate(keys):
            if key in by:
                samples[i, j] = by[key]
    return keys, samples


def summarize_runs(runs: Sequence[MassflowRun], quantiles: Sequence[float], montecarlo: bool,
                   keep_samples: bool = False) -> MassflowResult:
    if not runs:
        raise ValueError("At least one massflow run is needed for a summary.")

    entered = np.stack([r.entered for r in runs])
    recovered = np.stack([r.recovered for r in runs])
    lost = np.stack([r.lost for r in runs])

    safe = np.where(entered > 0, entered, 1.0)
    recovery_ratio = np.where(entered > 0, recovered / safe, 0.0)
    lost_ratio = np.where(entered[:, :, None] > 0, lost / safe[:, :, None], 0.0)

    samples = dict(entered=entered, recovered=recovered, recovery_ratio=recovery_ratio,
                   lost=lost, lost_ratio=lost_ratio)
    stats = {k: _reduce(v, quantiles) for k, v in samples.items()}

    destinations, recovered_by = _stack_breakdown(runs, "recovered_by")
    loss_sources, lost_by_tech = _stack_breakdown(runs, "lost_by_tech")
    if keep_samples:
        samples["recovered_by"] = recovered_by
        samples["lost_by_tech"] = lost_by_tech

    return MassflowResult(runs[0].substances, runs[0].pathways, statistic_names(quantiles), stats,
                          n=len(runs), montecarlo=montecarlo, samples=samples if keep_samples else None,
                          destinations=destinations, recovered_by=_reduce(recovered_by, quantiles),
                          loss_sources=loss_sources, lost_by_tech=_reduce(lost_by_tech, quantiles))
