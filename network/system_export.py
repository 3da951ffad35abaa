# system_export.py

from __future__ import annotations
import os, pickle, re
from typing import Any, Dict, List, Sequence

from core.massflow_summary import STATS_KEY
from catalog.technology import Tech
from network.system import System


def _dot_id(tech: Tech) -> str:
    # name alone is not unique, the same name may appear in several groups
    return re.sub(r"[^0-9A-Za-z_]", "_", f"{tech.name}_{tech.group}")


def _dot_label(text: str) -> str:
    return str(text).replace("\\", "\\\\").replace('"', '\\"')


def dot_string(system: System, options: str = "") -> str:
    """
    GraphViz description of a system: one box per technology labeled with its group,
    one edge per connection labeled with the product.
    """
    graph = system.to_graph()
    lines = ["digraph system {"]
    if options:
        lines.append(f"{options};")
    for tech, data in graph.nodes(data=True):
        lines.append(f"{_dot_id(tech)} [shape=box, label=\"{_dot_label(data['group'])}\"];")
    for u, v, data in graph.edges(data=True):
        lines.append(f"{_dot_id(u)} -> {_dot_id(v)} [label=\"{_dot_label(data['product'])}\"];")
    lines.append("}")
    return "\n".join(lines) + "\n"


def write_dot_file(system: System, path: str, options: str = "") -> None:
    """Write a DOT file, e.g. to render with `dot -Tpng file.dot -o graph.png`."""
    with open(path, "w") as f:
        f.write(dot_string(system, options))


def save_systems(systems: Sequence[System], path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "wb") as f:
        pickle.dump(list(systems), f)


def load_systems(path: str) -> List[System]:
    with open(path, "rb") as f:
        return pickle.load(f)


def massflow_records(systems: Sequence[System]) -> List[Dict[str, Any]]:
    """Flat rows over all systems with computed statistics, tagged with ID and source."""
    rows = []
    for s in systems:
        result = s.properties.get(STATS_KEY)
        if result is None:
            continue
        for row in result.to_records():
            rows.append(dict(ID=s.properties.get("ID"), source=s.properties.get("source"), **row))
    return rows
