import json, os, mlflow
from typing import Dict, List, Optional, Sequence

import numpy as np

from core.errors import InputMassesError
from core.massflow_summary import STATS_KEY


def set_mlflow_connection(tracking_uri: Optional[str], results_path: str) -> str:
    """Point mlflow to a tracking server, or to a file store inside the results directory."""
    if tracking_uri is None:
        tracking_uri = "file:" + os.path.join(os.path.abspath(results_path), "mlruns")
    mlflow.set_tracking_uri(tracking_uri)
    return tracking_uri


def spawn_seed_sequences(seed: Optional[int], n: int) -> List[np.random.SeedSequence]:
    """
    Independent seed sequences, one per unit of parallel work. `seed=None` takes fresh
    OS entropy, so two calls never share a stream.
    """
    return np.random.SeedSequence(seed).spawn(n)


def load_input_masses(path: str) -> Dict[str, Dict[str, float]]:
    """Read {source name: {substance: mass}} from a JSON file."""
    with open(path, "r") as f:
        data = json.load(f)
    if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
        raise InputMassesError(f"{path} must map source names to {{substance: mass}} objects.")
    try:
        return {str(src): {str(k): float(v) for k, v in masses.items()} for src, masses in data.items()}
    except (TypeError, ValueError) as e:
        raise InputMassesError(f"{path} contains a mass that is not a number: {e}") from e


def stats_table(systems: Sequence, statistic: str = "mean") -> str:
    """
    Plain text table with one row per system: entered, recovered and recovery ratio per substance.
    Systems without statistics are listed with their error (or as missing).
    """
    lines = []
    for s in systems:
        sid = s.properties.get("ID", "?")
        result = s.properties.get(STATS_KEY)
        if result is None:
            err = s.properties.get("massflow_error", "not computed")
            lines.append(f"{sid}\t{err.splitlines()[0]}")
            continue
        cells = []
        for sub in result.substances:
            entered = result.value("entered", sub, statistic)
            recovered = result.value("recovered", sub, statistic)
            ratio = result.value("recovery_ratio", sub, statistic)
            cells.append(f"{sub}: {entered:,.3f} -> {recovered:,.3f} ({ratio:.3f})")
        lines.append(f"{sid}\t{s.properties.get('source', '')}\t" + "\t".join(cells))
    return "\n".join(lines) + "\n"
