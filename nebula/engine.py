# nebula/engine.py
"""
Transformation Engine
=====================
discover  → tally per-pair change categories, run every registered proposer
validate  → confidence := fraction of training pairs reproduced exactly
apply     → best rule, then up to two more confident rules chained on top

Rules are only ever scored against training pairs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from nebula.config import EngineConfig
from nebula.grid import Grid
from nebula.patterns import PatternDetector
from nebula.proposers import ProposalContext, ProposerRegistry
from nebula.rules import (
    Example,
    RuleType,
    TransformationRule,
    count_reproduced,
    identity_rule,
    unique_rules,
)

logger = logging.getLogger(__name__)

SIZE_CHANGE    = "size_change"
COLOR_CHANGE   = "color_change"
PATTERN_CHANGE = "pattern_change"
COPY           = "copy"

CATEGORIES = (SIZE_CHANGE, COLOR_CHANGE, PATTERN_CHANGE)

FAMILIES: Dict[str, Tuple[RuleType, ...]] = {
    SIZE_CHANGE:    (RuleType.SCALING,),
    COLOR_CHANGE:   (RuleType.COLOR_MAPPING,),
    PATTERN_CHANGE: (RuleType.PATTERN_FILL, RuleType.SYMMETRY, RuleType.CONNECTIVITY),
    COPY:           (RuleType.NONE,),
}


@dataclass
class Discovery:
    votes:      Dict[str, int]
    dominant:   str
    candidates: List[TransformationRule] = field(default_factory=list)


class TransformationEngine:

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        proposers: Optional[ProposerRegistry] = None,
        detector: Optional[PatternDetector] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.proposers = proposers if proposers is not None else ProposerRegistry.build()
        self.detector = detector or PatternDetector()

    # ── Discovery ─────────────────────────────────────────────────────────────

    def categorize(self, example: Example) -> List[str]:
        found = []
        if example.input.shape != example.output.shape:
            found.append(SIZE_CHANGE)
        if example.input.unique_colors() != example.output.unique_colors():
            found.append(COLOR_CHANGE)
        if len(self.detector.detect(example.input)) != len(self.detector.detect(example.output)):
            found.append(PATTERN_CHANGE)
        return found

    def discover_rules(self, examples: Sequence[Example]) -> Discovery:
        if not examples:
            return Discovery({}, COPY, [identity_rule()])

        votes: Dict[str, int] = {}
        for ex in examples:
            for category in self.categorize(ex):
                votes[category] = votes.get(category, 0) + 1
        # dict preserves first-seen order, max keeps the first among ties
        dominant = max(votes, key=votes.get) if votes else COPY

        context = ProposalContext(config=self.config, detector=self.detector, votes=votes)
        candidates = unique_rules(self.proposers.propose(examples, context))
        logger.info(
            "Discovery over %d examples | dominant=%s votes=%s candidates=%d",
            len(examples), dominant, votes, len(candidates),
        )
        return Discovery(votes, dominant, candidates)

    # ── Validation ────────────────────────────────────────────────────────────

    def validate_rules_across_examples(
        self,
        rules: Iterable[TransformationRule],
        examples: Sequence[Example],
        dominant: Optional[str] = None,
    ) -> List[TransformationRule]:
        if not examples:
            return []
        preferred = FAMILIES.get(dominant, ())
        scored = []
        for rule in unique_rules(rules):
            confidence = count_reproduced([rule], examples) / len(examples)
            if confidence < self.config.acceptance_threshold:
                continue
            scored.append(rule.with_confidence(confidence))
            logger.debug("Rule %s validated at %.2f", rule.describe(), confidence)
        scored.sort(key=lambda r: (-r.confidence, r.kind not in preferred))
        return scored

    # ── Application ───────────────────────────────────────────────────────────

    def apply_best_rule(
        self,
        grid: Grid,
        rules: Sequence[TransformationRule],
        examples: Optional[Sequence[Example]] = None,
    ) -> Grid:
        if not rules:
            return grid.copy()
        result = rules[0](grid)
        if result is None:
            logger.debug("Top rule %s failed; returning input", rules[0].describe())
            return grid.copy()

        chain = [rules[0]]
        hits = count_reproduced(chain, examples) if examples else 0
        for rule in rules[1:self.config.max_chain]:
            if rule.confidence <= self.config.chain_threshold:
                continue
            chained_hits = hits
            if examples:
                chained_hits = count_reproduced(chain + [rule], examples)
                if chained_hits < hits:
                    logger.debug("Skipping chained %s: %d < %d matches", rule.describe(), chained_hits, hits)
                    continue
            candidate = rule(result)
            if candidate is None:
                continue
            chain.append(rule)
            hits = chained_hits
            result = candidate
        logger.debug("Applied chain %s", [r.describe() for r in chain])
        return result

    def solve(
        self,
        examples: Sequence[Example],
        test_input: Any,
        extra_candidates: Iterable[TransformationRule] = (),
    ) -> Tuple[Grid, List[TransformationRule]]:
        """Discover, validate and apply; returns the prediction and the ranked rules."""
        grid = test_input if isinstance(test_input, Grid) else Grid(test_input)
        discovery = self.discover_rules(examples)
        candidates = list(extra_candidates) + discovery.candidates
        ranked = self.validate_rules_across_examples(candidates, examples, discovery.dominant)
        return self.apply_best_rule(grid, ranked, examples), ranked
