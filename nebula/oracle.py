# nebula/oracle.py
"""
Validity Oracle
===============
Reads a geometric hypothesis off a cluster's motion and scores it against
the known training pairs. The score flows back into the galaxy only as a
smoothed luminosity/energy adjustment of the cluster's members.

Translation  = round(mean xy velocity * cells_per_velocity)
Rotation     = round(angular momentum) quarter turns, when |L| > threshold
Color map    = member colors -> training output colors at their source cells
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from nebula import transforms
from nebula.clusters import Cluster
from nebula.config import OracleConfig
from nebula.encoding import COLOR_WAVELENGTHS, NeuralPattern, color_to_wavelength, pattern_cells, wavelength_to_color
from nebula.grid import Grid
from nebula.particles import ParticleStore
from nebula.rules import Example, RuleType, TransformationRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterTransform:
    dx:            int = 0
    dy:            int = 0
    quarter_turns: int = 0

    @property
    def is_identity(self) -> bool:
        return self.dx == 0 and self.dy == 0 and self.quarter_turns % 4 == 0


def grid_similarity(a: Grid, b: Grid) -> float:
    return a.match_ratio(b)


class ValidityOracle:

    def __init__(self, config: Optional[OracleConfig] = None) -> None:
        self.config = config or OracleConfig()

    def implied_transform(self, cluster: Cluster) -> ClusterTransform:
        scale = self.config.cells_per_velocity
        dx = int(np.round(cluster.mean_velocity[0] * scale))
        dy = int(np.round(cluster.mean_velocity[1] * scale))
        turns = 0
        if abs(cluster.angular_momentum) > self.config.rotation_threshold:
            turns = int(np.round(cluster.angular_momentum)) % 4
        return ClusterTransform(dx, dy, turns)

    @staticmethod
    def apply_transform(grid: Grid, transform: ClusterTransform) -> Grid:
        out = transforms.rotate(grid, transform.quarter_turns)
        if transform.dx or transform.dy:
            out = transforms.translate(out, transform.dx, transform.dy)
        return out

    def evaluate(self, cluster: Cluster, examples: Sequence[Example]) -> float:
        """Mean cell match ratio of the implied transform over the training pairs."""
        if not examples:
            return 0.0
        transform = self.implied_transform(cluster)
        total = 0.0
        for ex in examples:
            predicted = self.apply_transform(ex.input, transform)
            total += grid_similarity(predicted, ex.output)
        return total / len(examples)

    def update_luminosity(self, store: ParticleStore, indices: np.ndarray, validity: float, dt: float) -> None:
        cfg = self.config
        rate = min(1.0, dt * cfg.adjustment_rate)
        current = store.luminosity[indices]
        target = current * (1.0 + validity)
        store.luminosity[indices] = current + (target - current) * rate
        store.energy[indices] += validity * cfg.energy_gain * dt

    def reinforce(
        self,
        store: ParticleStore,
        clusters: Sequence[Cluster],
        examples: Sequence[Example],
        dt: float,
    ) -> List[Tuple[Cluster, float]]:
        scored = []
        for cluster in clusters:
            validity = self.evaluate(cluster, examples)
            self.update_luminosity(store, cluster.indices, validity, dt)
            scored.append((cluster, validity))
        if scored:
            best = max(v for _, v in scored)
            logger.debug("Reinforced %d clusters | best validity=%.3f", len(scored), best)
        return scored


def spectral_mapping(
    cluster: Cluster,
    patterns: Sequence[NeuralPattern],
    examples: Sequence[Example],
) -> Dict[int, int]:
    """
    Color carried by each member neuron -> color of the training output at
    the neuron's source cell. Both sides are read back through the
    wavelength palette; the first mapping seen for a color wins.
    """
    cells = pattern_cells(patterns)
    wavelengths = np.concatenate([p.wavelengths for p in patterns]) if patterns else np.zeros(0)
    mapping: Dict[int, int] = {}
    for i in cluster.indices:
        if i >= len(cells):
            continue
        k, x, y = (int(v) for v in cells[i])
        if k >= len(examples):
            continue
        target = examples[k].output.get(x, y)
        if target not in COLOR_WAVELENGTHS:
            continue
        src = wavelength_to_color(wavelengths[i])
        mapping.setdefault(src, wavelength_to_color(color_to_wavelength(target)))
    return mapping


def rules_from_cluster(
    transform: ClusterTransform,
    confidence: float = 0.0,
    mapping: Optional[Dict[int, int]] = None,
) -> List[TransformationRule]:
    """Rotation, translation and color candidates implied by a cluster."""
    rules = []
    if transform.quarter_turns % 4:
        rules.append(TransformationRule(
            RuleType.ROTATION, {"quarter_turns": transform.quarter_turns % 4}, confidence, source="cluster",
        ))
    if transform.dx or transform.dy:
        rules.append(TransformationRule(
            RuleType.TRANSLATION, {"dx": transform.dx, "dy": transform.dy}, confidence, source="cluster",
        ))
    if mapping and any(src != dst for src, dst in mapping.items()):
        rules.append(TransformationRule(
            RuleType.COLOR_MAPPING, {"mapping": dict(mapping)}, confidence, source="cluster",
        ))
    return rules
