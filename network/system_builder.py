# system_builder.py

from __future__ import annotations
import logging
from collections import Counter
from typing import IO, List, Optional, Sequence, Set, Union

from catalog.technology import Product, Tech
from core.errors import SystemCompleteError
from network.system import Connection, System

logger = logging.getLogger(__name__)


# ----- open streams -----

def open_outputs(system: System) -> Counter:
    """
    Counter over (tech, product) of output units not yet consumed by a connection.
    Kept per technology so a single unit can never feed two consumers.
    """
    outs: Counter = Counter()
    for tech in system.tech_list():
        for p in tech.outputs:
            outs[(tech, p)] += 1
    for con in system.connections:
        outs[(con.source, con.product)] -= 1
    return Counter({k: v for k, v in outs.items() if v > 0})


def open_inputs(system: System) -> Counter:
    """
    Counter over (tech, product) of input units with no connection feeding them.
    These may stay open in a complete system when nothing in the pool can serve them.
    """
    ins: Counter = Counter()
    for tech in system.tech_list():
        for p in tech.inputs:
            ins[(tech, p)] += 1
    for con in system.connections:
        ins[(con.target, con.product)] -= 1
    return Counter({k: v for k, v in ins.items() if v > 0})


def open_output_products(system: System) -> Set[Product]:
    return {p for (_, p) in open_outputs(system)}


# ----- search steps -----

def candidates(system: System, techs: Sequence[Tech]) -> List[Tech]:
    """Technologies of the pool, not yet used, with an input matching an open output."""
    outs = open_output_products(system)
    return [t for t in techs if t not in system and any(i in outs for i in t.inputs)]


def extend(system: System, candidate: Tech) -> System:
    """
    Return a copy of `system` with `candidate` added as the next stage.

    Every technology offering an open output of a product the candidate consumes is
    connected to it (fan-in), using up one unit of that output each. Inputs without a
    matching open output stay open.
    """
    if system.complete:
        raise SystemCompleteError("Cannot extend a complete system.")
    if candidate in system:
        raise ValueError(f"Technology {candidate.name} is already part of the system.")

    offered = open_outputs(system)
    new_connections: List[Connection] = []
    for product in candidate.inputs:
        providers = [tech for (tech, p), n in offered.items() if p == product and n > 0]
        for tech in providers:
            new_connections.append(Connection(product, tech, candidate))
            offered[(tech, product)] -= 1

    extended = system.copy()
    extended.add_stage([candidate], new_connections)
    return extended


# ----- exhaustive search -----

def _emit(line: str, sink: Optional[IO]) -> None:
    if sink is not None:
        print(line, file=sink)
        sink.flush()


def _build_system(system: System, completesystems: List[System], techs: Sequence[Tech],
                  resultfile: Optional[IO]) -> None:
    matching = candidates(system, techs)

    if not matching:
        system.mark_complete()
        completesystems.append(system)
        _emit(system.summary_line(), resultfile)
        return

    for candidate in matching:
        # `extend` hands back a private copy for this branch
        _build_system(extend(system, candidate), completesystems, techs, resultfile)


def unique_systems(systems: Sequence[System]) -> List[System]:
    seen = set()
    unique = []
    for s in systems:
        key = s.signature()
        if key in seen:
            continue
        seen.add(key)
        unique.append(s)
    return unique


def build_all_systems(source: Union[Tech, Sequence[Tech]], techs: Sequence[Tech],
                      resultfile: Optional[IO] = None, errorfile: Optional[IO] = None,
                      deduplicate: bool = False) -> List[System]:
    """
    Return all complete systems reachable from `source` with technologies from `techs`.

    Parameters:
        source: source technology, or several sources that share the first stage.
        techs: technology pool; never modified.
        resultfile: optional text sink, one line per complete system as it is found.
        errorfile: optional text sink for the dead-end diagnostic (source unusable with the pool).
        deduplicate: keep only the first system per (technologies, connections) signature.
    """
    sources = [source] if isinstance(source, Tech) else list(source)
    pool = tuple(techs)
    root = System(sources)

    if not candidates(root, pool):
        names = ", ".join(s.name for s in sources)
        logger.warning("Dead end: no technology in the pool accepts an output of %s.", names)
        _emit(f"dead end!: {root.summary_line()}", errorfile)

    completesystems: List[System] = []
    _build_system(root, completesystems, pool, resultfile)

    if deduplicate:
        completesystems = unique_systems(completesystems)

    logger.info("Found %d complete systems for source(s) %s.", len(completesystems),
                ", ".join(s.name for s in sources))
    return completesystems


def build_systems(sources: Sequence[Tech], techs: Sequence[Tech], additional_sources: Sequence[Tech] = (),
                  resultfile: Optional[IO] = None, errorfile: Optional[IO] = None,
                  deduplicate: bool = False) -> List[System]:
    """
    Run the search for each source (together with `additional_sources`) and tag
    the systems with ID, source, ntechs and connectivity properties.
    """
    allsystems: List[System] = []
    for source in sources:
        found = build_all_systems([source, *additional_sources], techs,
                                  resultfile=resultfile, errorfile=errorfile, deduplicate=deduplicate)
        for s in found:
            s.properties["source"] = source.name
        allsystems.extend(found)

    for i, s in enumerate(allsystems, start=1):
        s.properties["ID"] = f"S{i:04d}"
        s.properties["ntechs"] = s.ntechs
        s.properties["connectivity"] = s.connectivity

    logger.info("Built %d systems from %d sources.", len(allsystems), len(sources))
    return allsystems
