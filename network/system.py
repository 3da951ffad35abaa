# system.py

from __future__ import annotations
import copy
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

import networkx as nx

from catalog.technology import Product, Tech
from core.errors import SystemCompleteError, SystemStructureError


class Connection(NamedTuple):
    """One unit of `product` flowing from `source` (output) to `target` (input)."""
    product: Product
    source: Tech
    target: Tech

    def __str__(self) -> str:
        return f"{self.product} | {self.source} | {self.target}"


class System:

    """
    Network of technologies built stage by stage.

    stages[0] holds the source(s); every later stage holds the technology added at that
    step of the search. A system is owned by one branch of the search while it grows and
    is frozen structurally once `complete` is set. `properties` is free metadata
    (ID, source, mass-flow statistics, ...).
    """

    def __init__(self, sources: Iterable[Tech], connections: Optional[Iterable[Connection]] = None,
                 complete: bool = False, properties: Optional[Dict[str, Any]] = None):
        stage0 = list(sources)
        if not stage0:
            raise ValueError("A system needs at least one source technology.")

        self.stages: List[List[Tech]] = []
        self._techs: set = set()
        self.connections: List[Connection] = []
        self.complete = False
        self.properties: Dict[str, Any] = dict(properties) if properties else {}

        self.add_stage(stage0, connections or [])
        self.complete = complete

    # ----- structure -----

    @property
    def techs(self) -> FrozenSet[Tech]:
        return frozenset(self._techs)

    @property
    def sources(self) -> List[Tech]:
        return list(self.stages[0])

    @property
    def sinks(self) -> List[Tech]:
        return [t for t in self.tech_list() if t.is_sink]

    def tech_list(self) -> List[Tech]:
        """Technologies in stage (construction) order."""
        return [t for stage in self.stages for t in stage]

    def stage_of(self, tech: Tech) -> int:
        for i, stage in enumerate(self.stages):
            if tech in stage:
                return i
        raise KeyError(f"{tech.name} is not part of the system.")

    def add_stage(self, techs: Sequence[Tech], connections: Iterable[Connection] = ()) -> None:
        if self.complete:
            raise SystemCompleteError("Cannot add technologies to a complete system.")

        techs = list(techs)
        for t in techs:
            if t in self._techs:
                raise ValueError(f"Technology {t.name} is already part of the system.")
        if len(set(techs)) != len(techs):
            raise ValueError("A stage cannot contain the same technology twice.")

        self.stages.append(techs)
        self._techs.update(techs)
        self.connections.extend(connections)
        self._assert_connections_valid()

    def mark_complete(self) -> None:
        self.complete = True

    def _assert_connections_valid(self) -> None:
        for con in self.connections:
            if con.source not in self._techs or con.target not in self._techs:
                raise SystemStructureError(
                    f"Connection {con.product} from {con.source.name} to {con.target.name} "
                    f"references a technology outside the system."
                )

    # ----- copies & comparisons -----

    def copy(self) -> "System":
        """Independent copy; technologies are immutable and shared, containers are not."""
        new = System.__new__(System)
        new.stages = [list(stage) for stage in self.stages]
        new._techs = set(self._techs)
        new.connections = list(self.connections)
        new.complete = self.complete
        new.properties = copy.deepcopy(self.properties)
        return new

    def signature(self) -> Tuple[FrozenSet[Tech], FrozenSet[Connection]]:
        return frozenset(self._techs), frozenset(self.connections)

    @property
    def ntechs(self) -> int:
        return len(self._techs)

    @property
    def connectivity(self) -> float:
        return len(self.connections) / len(self._techs)

    def __contains__(self, tech: Tech) -> bool:
        return tech in self._techs

    def __len__(self) -> int:
        return len(self._techs)

    def __iter__(self) -> Iterator[Tech]:
        return iter(self.tech_list())

    # ----- graph view -----

    def to_graph(self) -> nx.MultiDiGraph:
        """
        MultiDiGraph view: nodes are technologies (attrs: stage, group),
        edges are connections (attr: product).
        """
        graph = nx.MultiDiGraph()
        for i, stage in enumerate(self.stages):
            for t in stage:
                graph.add_node(t, stage=i, group=t.group, name=t.name)
        for con in self.connections:
            graph.add_edge(con.source, con.target, product=con.product)
        return graph

    # ----- printing -----

    def summary_line(self) -> str:
        stages = " -> ".join("[" + ", ".join(t.name for t in stage) + "]" for stage in self.stages)
        cons = "; ".join(f"{c.product}: {c.source.name}>{c.target.name}" for c in self.connections)
        prefix = "" if self.complete else "Incomplete "
        return f"{prefix}System({self.ntechs} techs, {len(self.connections)} connections) {stages} | {cons}"

    def __str__(self) -> str:
        lines = [("" if self.complete else "Incomplete ")
                 + f"System with {self.ntechs} technologies and {len(self.connections)} connections: "]
        lines.extend(str(con) for con in self.connections)
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"<System id={self.properties.get('ID')} techs={self.ntechs} complete={self.complete}>"
