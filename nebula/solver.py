# nebula/solver.py
"""
Task Solver
===========
Composes the galaxy and the rule engine for one task:

  1. (optional) encode the training inputs as neurons, inject their cells as
     photon bursts and evolve the galaxy for a few frames
  2. identify clusters, score them against the training pairs with the
     oracle, and turn the motion and member colors of validated clusters
     into candidate rules
  3. run engine discovery, validate all candidates together, and apply the
     ranked rules to every test input

With frames=0 the galaxy is skipped and only engine discovery runs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from nebula.clusters import ClusterIdentifier
from nebula.config import DiversityConfig, GalaxyConfig, OracleConfig
from nebula.diversity import DiversityController
from nebula.dynamics import DynamicsEngine
from nebula.encoding import GRID_SCALE, PHOTONS_PER_CELL, encode_inputs, grid_to_bursts, store_from_patterns
from nebula.engine import TransformationEngine
from nebula.grid import Grid
from nebula.oracle import ValidityOracle, rules_from_cluster, spectral_mapping
from nebula.rules import Example, TransformationRule, as_grid, unique_rules

logger = logging.getLogger(__name__)

Pair = Tuple[Any, Any]


@dataclass
class TaskResult:
    predictions:   List[Grid]
    rules:         List[TransformationRule] = field(default_factory=list)
    cluster_rules: List[TransformationRule] = field(default_factory=list)


class NebulaSolver:

    def __init__(
        self,
        engine: Optional[TransformationEngine] = None,
        galaxy_config: Optional[GalaxyConfig] = None,
        diversity_config: Optional[DiversityConfig] = None,
        oracle_config: Optional[OracleConfig] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.engine = engine or TransformationEngine()
        self.galaxy_config = galaxy_config or GalaxyConfig()
        self.diversity_config = diversity_config or DiversityConfig()
        self.oracle = ValidityOracle(oracle_config)
        self.rng = np.random.default_rng(seed)
        # adjacent and diagonal cells of one grid share a cluster
        self.identifier = ClusterIdentifier(
            threshold=1.5 * GRID_SCALE,
            min_size=self.oracle.config.min_cluster_size,
            coherence_cosine=self.oracle.config.coherence_cosine,
        )

    def galaxy_candidates(self, examples: Sequence[Example], frames: int, dt: float) -> List[TransformationRule]:
        inputs = [ex.input for ex in examples]
        patterns = encode_inputs(inputs)
        cells = sum(g.width * g.height for g in inputs)
        store = store_from_patterns(patterns, num_photons=cells * PHOTONS_PER_CELL)
        for k, grid in enumerate(inputs):
            store.inject_bursts(grid_to_bursts(grid, example_index=k))
        if store.num_neurons == 0:
            return []

        dynamics = DynamicsEngine(self.galaxy_config, self.rng)
        diversity = DiversityController(self.diversity_config, self.rng, self.identifier)
        for _ in range(frames):
            dynamics.step(store, dt)
            diversity.update(store, dt)

        clusters = self.identifier.identify(store)
        scored = self.oracle.reinforce(store, clusters, examples, dt)

        rules: List[TransformationRule] = []
        for cluster, validity in scored:
            if validity <= 0.0:
                continue
            transform = self.oracle.implied_transform(cluster)
            mapping = spectral_mapping(cluster, patterns, examples)
            rules.extend(rules_from_cluster(transform, validity, mapping))
        rules = unique_rules(rules)
        logger.info(
            "Galaxy run | frames=%d neurons=%d clusters=%d cluster_rules=%d",
            frames, store.num_neurons, len(clusters), len(rules),
        )
        return rules

    def solve(
        self,
        train_pairs: Sequence[Pair],
        test_inputs: Sequence[Any],
        frames: int = 0,
        dt: float = 0.01,
    ) -> TaskResult:
        examples = [p if isinstance(p, Example) else Example.of(*p) for p in train_pairs]
        cluster_rules = self.galaxy_candidates(examples, frames, dt) if frames > 0 and examples else []

        discovery = self.engine.discover_rules(examples)
        ranked = self.engine.validate_rules_across_examples(
            cluster_rules + discovery.candidates, examples, discovery.dominant,
        )
        predictions = [self.engine.apply_best_rule(as_grid(g), ranked, examples) for g in test_inputs]

        if ranked:
            logger.info("Solved %d test inputs | best=%r", len(predictions), ranked[0])
        else:
            logger.info("No rule validated; returning %d unchanged inputs", len(predictions))
        return TaskResult(predictions, ranked, cluster_rules)


def solve_task(
    train_pairs: Sequence[Pair],
    test_inputs: Sequence[Any],
    frames: int = 0,
    dt: float = 0.01,
    seed: Optional[int] = None,
) -> List[Grid]:
    """One output Grid per test input."""
    return NebulaSolver(seed=seed).solve(train_pairs, test_inputs, frames, dt).predictions
