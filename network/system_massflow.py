# system_massflow.py

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import networkx as nx

from catalog.technology import RECOVERED, Tech
from config import MassflowConfig
from core.errors import MassBalanceError, SystemStructureError, UnmatchedSourceError
from network.system import Connection, System

logger = logging.getLogger(__name__)


@dataclass
class MassflowRun:

    """
    Masses of one propagation through a system.

    Vectors are indexed like `substances`; `lost` has shape (substances, pathways).
    `recovered_by` is keyed by destination: a sink technology's name or the name of an
    output product nothing consumes.
    """

    substances: Tuple[str, ...]
    pathways: Tuple[str, ...]
    entered: np.ndarray
    recovered: np.ndarray
    lost: np.ndarray
    recovered_by: Dict[str, np.ndarray] = field(default_factory=dict)
    lost_by_tech: Dict[Tuple[str, str], np.ndarray] = field(default_factory=dict)
    connection_flows: List[Tuple[Connection, np.ndarray]] = field(default_factory=list)

    def balance(self) -> np.ndarray:
        """entered - recovered - sum of losses, per substance. Zero up to rounding."""
        return self.entered - self.recovered - self.lost.sum(axis=1)

    def lost_total(self) -> np.ndarray:
        return self.lost.sum(axis=1)


def tracked_substances(input_masses: Mapping[str, Mapping[str, float]]) -> Tuple[str, ...]:
    """Union of substance names over all sources, in first-appearance order."""
    names: List[str] = []
    for masses in input_masses.values():
        for s in masses:
            if s not in names:
                names.append(s)
    return tuple(names)


def system_pathways(system: System) -> Tuple[str, ...]:
    pathways: List[str] = []
    for tech in system.tech_list():
        for pw in tech.loss_pathways():
            if pw not in pathways:
                pathways.append(pw)
    return tuple(pathways)


def check_sources(system: System, input_masses: Mapping[str, Mapping[str, float]]) -> None:
    missing = [t.name for t in system.sources if t.name not in input_masses]
    if missing:
        raise UnmatchedSourceError(f"No input masses given for source(s): {', '.join(missing)}.")


def _partition(tech: Tech, substances: Sequence[str], montecarlo: bool, rng: Optional[np.random.Generator],
               reliability_scale: float) -> List[Dict[str, float]]:
    if montecarlo:
        return [tech.sample_transfer_coefficients(s, rng, reliability_scale) for s in substances]
    return [tech.transfer_coefficients(s) for s in substances]


def massflow(system: System, input_masses: Mapping[str, Mapping[str, float]], montecarlo: bool = False,
             reliability_scale: float = 1.0, rng: Optional[np.random.Generator] = None,
             substances: Optional[Sequence[str]] = None, config: Optional[MassflowConfig] = None) -> MassflowRun:
    """
    Propagate the source masses through a complete system.

    Parameters:
        input_masses: {source technology name: {substance: mass}}. Every source of the system needs an entry.
        montecarlo: sample each technology's transfer coefficients instead of using the nominal ones.
        reliability_scale: multiplies every technology's reliability for the draws.
        rng: random generator for the draws. A fresh one is created if not given.
        substances: substances to track; defaults to `config.tracked_substances`, else all
            substances named in `input_masses`.
    """
    config = config or MassflowConfig()
    if not system.complete:
        raise ValueError("Mass flows can only be computed for complete systems.")
    check_sources(system, input_masses)
    if montecarlo and rng is None:
        rng = np.random.default_rng()

    if substances is None:
        substances = config.tracked_substances or tracked_substances(input_masses)
    substances = tuple(substances)
    pathways = system_pathways(system)
    pw_index = {pw: j for j, pw in enumerate(pathways)}
    n_subs = len(substances)

    entered = np.zeros(n_subs)
    recovered = np.zeros(n_subs)
    lost = np.zeros((n_subs, len(pathways)))
    recovered_by: Dict[str, np.ndarray] = {}
    lost_by_tech: Dict[Tuple[str, str], np.ndarray] = {}
    connection_flows: List[np.ndarray] = [np.zeros(n_subs) for _ in system.connections]

    graph = system.to_graph()
    outgoing: Dict[Tech, List[int]] = {t: [] for t in graph.nodes}
    incoming: Dict[Tech, List[int]] = {t: [] for t in graph.nodes}
    for k, con in enumerate(system.connections):
        outgoing[con.source].append(k)
        incoming[con.target].append(k)

    def _recover(destination: str, mass: np.ndarray) -> None:
        nonlocal recovered
        recovered = recovered + mass
        recovered_by[destination] = recovered_by.get(destination, np.zeros(n_subs)) + mass

    for tech in nx.topological_sort(graph):
        if graph.nodes[tech]["stage"] == 0:
            m_in = np.array([float(input_masses[tech.name].get(s, 0.0)) for s in substances])
            entered += m_in
        else:
            # fan-in: sum over every connection feeding this technology
            m_in = np.zeros(n_subs)
            for k in incoming[tech]:
                m_in = m_in + connection_flows[k]

        coeffs = _partition(tech, substances, montecarlo, rng, reliability_scale)

        # outputs: mass of one product is split evenly over its output units
        for product in tech.output_products():
            mass_p = m_in * np.array([c[product.name] for c in coeffs])
            units = tech.outputs.count(product)
            used = [k for k in outgoing[tech] if system.connections[k].product == product]
            if len(used) > units:
                raise SystemStructureError(
                    f"{tech.name} has {units} output(s) of {product} but feeds {len(used)} connections.")
            for k in used:
                connection_flows[k] = mass_p / units
            if units > len(used):
                _recover(product.name, mass_p * (units - len(used)) / units)

        # losses
        for pw in tech.loss_pathways():
            mass_pw = m_in * np.array([c.get(pw, 0.0) for c in coeffs])
            lost[:, pw_index[pw]] += mass_pw
            lost_by_tech[(tech.name, pw)] = lost_by_tech.get((tech.name, pw), np.zeros(n_subs)) + mass_pw

        if tech.is_sink:
            _recover(tech.name, m_in * np.array([c[RECOVERED] for c in coeffs]))

    run = MassflowRun(substances, pathways, entered, recovered, lost, recovered_by, lost_by_tech,
                      list(zip(system.connections, connection_flows)))
    _mass_balance_check(run, config)
    return run


def _mass_balance_check(run: MassflowRun, config: MassflowConfig) -> None:
    diff = run.balance()
    threshold = config.mb_atol + config.mb_rtol * np.abs(run.entered)
    logger.debug("Mass balance: entered=%s recovered=%s lost=%s diff=%s",
                 np.array2string(run.entered, precision=6), np.array2string(run.recovered, precision=6),
                 np.array2string(run.lost_total(), precision=6), np.array2string(diff, precision=3))
    if np.any(np.abs(diff) > threshold):
        bad = {s: float(d) for s, d, t in zip(run.substances, diff, threshold) if abs(d) > t}
        raise MassBalanceError(f"Mass balance violated: {bad}")
