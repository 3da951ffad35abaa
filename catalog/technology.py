# technology.py

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np

# reserved transfer target for mass that reaches a sink
RECOVERED = "recovered"

# tolerance when checking that explicit fractions do not exceed 1
FRACTION_TOL = 1e-9


@dataclass(frozen=True)
class Product:
    """
    Named material type flowing between technologies (e.g. "urine", "sludge").
    Compared and hashed by name only.
    """
    name: str

    def __post_init__(self):
        if isinstance(self.name, Product):
            object.__setattr__(self, "name", self.name.name)
        if not isinstance(self.name, str) or not self.name:
            raise ValueError(f"Product name must be a non-empty string, got {self.name!r}.")

    def __str__(self) -> str:
        return self.name


def _as_products(items: Iterable[Union[str, Product]]) -> Tuple[Product, ...]:
    return tuple(x if isinstance(x, Product) else Product(x) for x in items)


@dataclass(frozen=True)
class Tech:

    """
    Technology node of a sanitation system.

    Identity (equality, hashing) is given by inputs, outputs, name and group. A technology
    without inputs is a source, one without outputs is a sink.

    `transfer` maps a substance to {target: fraction}. A target named like one of the
    outputs routes mass to that output, any other target is a loss pathway
    (e.g. "air loss", "soil loss"). Unassigned mass is split over the outputs, or counted
    as recovered for sinks. `reliability` is the Dirichlet concentration used when the
    coefficients are sampled.
    """

    inputs: Tuple[Product, ...]
    outputs: Tuple[Product, ...]
    name: str
    group: str
    transfer: Mapping[str, Mapping[str, float]] = field(default_factory=dict, compare=False, repr=False)
    reliability: float = field(default=10.0, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "inputs", _as_products(self.inputs))
        object.__setattr__(self, "outputs", _as_products(self.outputs))
        object.__setattr__(self, "group", str(self.group))
        if not self.name:
            raise ValueError("Technology name must not be empty.")
        if self.reliability <= 0:
            raise ValueError(f"Reliability of {self.name} must be positive, got {self.reliability}.")

        transfer = {}
        for substance, targets in dict(self.transfer).items():
            targets = {str(k): float(v) for k, v in dict(targets).items()}
            for target, frac in targets.items():
                if not 0.0 <= frac <= 1.0:
                    raise ValueError(f"{self.name}: fraction {target}={frac} for {substance} is outside [0, 1].")
                if target == RECOVERED:
                    raise ValueError(f"{self.name}: '{RECOVERED}' is reserved and cannot be a transfer target.")
            total = sum(targets.values())
            if total > 1.0 + FRACTION_TOL:
                raise ValueError(f"{self.name}: fractions for {substance} sum to more than 1.")
            if total > 1.0:
                # rounding excess within tolerance, keep the partition exact
                targets = {target: frac / total for target, frac in targets.items()}
            transfer[str(substance)] = targets
        object.__setattr__(self, "transfer", transfer)

    # ----- classification -----

    @property
    def is_source(self) -> bool:
        return len(self.inputs) == 0

    @property
    def is_sink(self) -> bool:
        return len(self.outputs) == 0

    @property
    def n_inputs(self) -> int:
        return len(self.inputs)

    def output_products(self) -> List[Product]:
        """Distinct output products in declaration order."""
        return list(dict.fromkeys(self.outputs))

    def loss_pathways(self) -> List[str]:
        out_names = {p.name for p in self.outputs}
        pathways: List[str] = []
        for targets in self.transfer.values():
            for target in targets:
                if target not in out_names and target not in pathways:
                    pathways.append(target)
        return pathways

    # ----- transfer coefficients -----

    def transfer_coefficients(self, substance: str) -> Dict[str, float]:
        """
        Complete partition of one unit of incoming `substance` over outputs (by product
        name), loss pathways and, for sinks, RECOVERED. Values sum to 1.
        """
        explicit = dict(self.transfer.get(substance, {}))
        total = sum(explicit.values())
        if total > 1.0:
            explicit = {k: v / total for k, v in explicit.items()}
        remainder = max(1.0 - sum(explicit.values()), 0.0)

        out_names = [p.name for p in self.output_products()]
        coeffs: Dict[str, float] = {name: explicit.pop(name, None) for name in out_names}

        if out_names:
            free = [name for name, v in coeffs.items() if v is None]
            receivers = free if free else out_names
            for name in out_names:
                coeffs[name] = coeffs[name] or 0.0
            for name in receivers:
                coeffs[name] += remainder / len(receivers)
        else:
            coeffs[RECOVERED] = remainder

        # remaining explicit entries are loss pathways
        coeffs.update(explicit)
        return coeffs

    def sample_transfer_coefficients(self, substance: str, rng: np.random.Generator,
                                     reliability_scale: float = 1.0) -> Dict[str, float]:
        """
        Draw a partition from a Dirichlet distribution centred on the nominal coefficients.
        Larger `reliability_scale` gives draws closer to the nominal values.
        """
        nominal = self.transfer_coefficients(substance)
        targets = [t for t, v in nominal.items() if v > 0.0]
        if len(targets) < 2:
            return nominal

        alpha = np.array([nominal[t] for t in targets]) * self.reliability * reliability_scale
        draw = rng.dirichlet(alpha)
        draw = draw / draw.sum()

        sampled = {t: 0.0 for t in nominal}
        for t, v in zip(targets, draw):
            sampled[t] = float(v)
        return sampled

    def __str__(self) -> str:
        ins = ", ".join(p.name for p in self.inputs) or "Source"
        outs = ", ".join(p.name for p in self.outputs) or "Sink"
        return f"{self.name}: ({ins}) -> ({outs})"


def make_tech(inputs: Iterable[str], outputs: Iterable[str], name: str, group: str,
              transfer: Optional[Mapping[str, Mapping[str, float]]] = None,
              reliability: float = 10.0) -> Tech:
    return Tech(tuple(inputs), tuple(outputs), name, group, transfer or {}, reliability)
