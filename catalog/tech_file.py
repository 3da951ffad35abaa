# tech_file.py

from __future__ import annotations
import json, logging
from typing import Any, Dict, List, Optional, Tuple

from catalog.technology import Tech
from core.errors import TechFileError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "group", "inputs", "outputs")


def tech_from_dict(entry: Dict[str, Any]) -> Tech:
    """
    Build a technology from one library entry:

        {"name": "Pour.flush", "group": "U", "inputs": [], "outputs": ["blackwater"],
         "transfer": {"water": {"water loss": 0.1}}, "reliability": 20}
    """
    missing = [f for f in REQUIRED_FIELDS if f not in entry]
    if missing:
        raise TechFileError(f"Technology entry {entry.get('name', '?')!r} misses field(s): {', '.join(missing)}.")
    if not isinstance(entry["inputs"], list) or not isinstance(entry["outputs"], list):
        raise TechFileError(f"Inputs and outputs of {entry['name']!r} must be lists of product names.")

    try:
        return Tech(tuple(entry["inputs"]), tuple(entry["outputs"]), str(entry["name"]), str(entry["group"]),
                    entry.get("transfer", {}), float(entry.get("reliability", 10.0)))
    except (TypeError, ValueError) as e:
        raise TechFileError(f"Invalid technology {entry['name']!r}: {e}") from e


def read_tech_file(path: str) -> List[Tech]:
    with open(path, "r") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise TechFileError(f"{path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("technologies")
    if not isinstance(data, list):
        raise TechFileError(f"{path} must contain a list of technologies (or a 'technologies' list).")

    techs = [tech_from_dict(entry) for entry in data]
    names = [(t.name, t.group) for t in techs]
    if len(set(names)) != len(names):
        raise TechFileError(f"{path} lists the same technology (name, group) more than once.")
    return techs


def import_tech_file(path: str, source_group: str = "U", source_add_group: str = "Uadd",
                     sink_group: Optional[str] = None) -> Tuple[List[Tech], List[Tech], List[Tech]]:
    """
    Read a technology library and split it into (sources, additional_sources, techs).

    Sources are the technologies of `source_group`, additional sources those of
    `source_add_group`. `techs` is the search pool: every technology with at least one
    input. If `sink_group` is given, technologies of that group must not have outputs.
    """
    all_techs = read_tech_file(path)

    sources = [t for t in all_techs if t.group == source_group]
    additional_sources = [t for t in all_techs if t.group == source_add_group]
    techs = [t for t in all_techs if not t.is_source]

    for t in sources + additional_sources:
        if not t.is_source:
            raise TechFileError(f"Source technology {t.name!r} must not have inputs.")
    if sink_group is not None:
        for t in all_techs:
            if t.group == sink_group and not t.is_sink:
                raise TechFileError(f"Sink technology {t.name!r} must not have outputs.")

    logger.info("Imported %d technologies from %s: %d sources, %d additional sources, %d in pool.",
                len(all_techs), path, len(sources), len(additional_sources), len(techs))
    return sources, additional_sources, techs
