# nebula/rules.py
"""
Transformation rules
====================
A TransformationRule is a rule family (RuleType) plus the parameters that
pin it down. Rules carry no code of their own; they dispatch through the
applier table below, so a rule is plain data that can be compared,
deduplicated and logged.

Applying a rule never raises to the caller through `__call__`: an applier
that fails on a given grid (shape mismatch, empty grid, bad params) yields
None and is treated as a non-match.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Sequence

from nebula import transforms
from nebula.grid import Grid
from nebula.patterns import PatternDetector

# ─────────────────────────────────────────────────────────────────────────────
# Types
# ─────────────────────────────────────────────────────────────────────────────

Applier = Callable[[Grid, Dict[str, Any]], Grid]

logger = logging.getLogger(__name__)


class RuleType(Enum):
    TRANSLATION   = "translation"
    ROTATION      = "rotation"
    REFLECTION    = "reflection"
    SCALING       = "scaling"
    COLOR_MAPPING = "color_mapping"
    PATTERN_FILL  = "pattern_fill"
    CONNECTIVITY  = "connectivity"
    SYMMETRY      = "symmetry"
    NONE          = "none"


def as_grid(value: Any) -> Grid:
    return value if isinstance(value, Grid) else Grid(value)


@dataclass(frozen=True)
class Example:
    """One training pair. Only training pairs ever carry an output."""
    input:  Grid
    output: Grid

    @classmethod
    def of(cls, input: Any, output: Any) -> "Example":
        return cls(as_grid(input), as_grid(output))


# ─────────────────────────────────────────────────────────────────────────────
# Appliers
# ─────────────────────────────────────────────────────────────────────────────

def _apply_scaling(grid: Grid, params: Dict[str, Any]) -> Grid:
    if "factor" in params:
        return transforms.scale(grid, int(params["factor"]))
    return transforms.resample(grid, int(params["width"]), int(params["height"]))


def _apply_pattern_fill(grid: Grid, params: Dict[str, Any]) -> Grid:
    detector = PatternDetector()
    edit = params.get("edit", "fill_rectangles")
    if edit == "fill_rectangles":
        threshold = params.get("threshold", 0.7)
        rects = [p for p in detector.rectangles(grid) if p.confidence > threshold]
        return transforms.fill_rectangles(grid, rects, params.get("color"))
    if edit == "extend_lines":
        threshold = params.get("threshold", 0.6)
        lines = [p for p in detector.lines(grid) if p.confidence > threshold]
        return transforms.extend_lines(grid, lines)
    raise ValueError(f"Unknown pattern edit: {edit}")


_APPLIERS: Dict[RuleType, Applier] = {
    RuleType.NONE:          lambda g, p: transforms.identity(g),
    RuleType.TRANSLATION:   lambda g, p: transforms.translate(g, int(p["dx"]), int(p["dy"]), p.get("fill", 0)),
    RuleType.ROTATION:      lambda g, p: transforms.rotate(g, int(p["quarter_turns"])),
    RuleType.REFLECTION:    lambda g, p: transforms.reflect(g, p["axis"]),
    RuleType.SCALING:       _apply_scaling,
    RuleType.COLOR_MAPPING: lambda g, p: transforms.color_map(g, p["mapping"]),
    RuleType.PATTERN_FILL:  _apply_pattern_fill,
    RuleType.SYMMETRY:      lambda g, p: transforms.mirror(g, p["axes"]),
    RuleType.CONNECTIVITY:  lambda g, p: transforms.connect_components(g, p.get("color")),
}


# ─────────────────────────────────────────────────────────────────────────────
# Rule
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class TransformationRule:
    kind:       RuleType
    params:     Dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    source:     str = ""

    def apply(self, grid: Grid) -> Grid:
        return _APPLIERS[self.kind](grid, self.params)

    def __call__(self, grid: Grid) -> Optional[Grid]:
        try:
            return self.apply(grid)
        except Exception as exc:
            logger.debug("Rule %s failed on %r: %s", self.describe(), grid, exc)
            return None

    def reproduces(self, example: Example) -> bool:
        result = self(example.input)
        return result is not None and result == example.output

    def with_confidence(self, confidence: float) -> "TransformationRule":
        return replace(self, params=dict(self.params), confidence=confidence)

    @property
    def signature(self) -> str:
        """Identity of the rule ignoring confidence and source."""
        return f"{self.kind.value}:{sorted(self.params.items(), key=lambda kv: kv[0])!r}"

    def describe(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in sorted(self.params.items()))
        return f"{self.kind.value}({args})"

    def __repr__(self) -> str:
        return f"TransformationRule({self.describe()}, confidence={self.confidence:.2f})"


def identity_rule(confidence: float = 1.0) -> TransformationRule:
    return TransformationRule(RuleType.NONE, {}, confidence, source="identity")


def unique_rules(rules: Iterable[TransformationRule]) -> list:
    seen = set()
    out = []
    for rule in rules:
        if rule.signature in seen:
            continue
        seen.add(rule.signature)
        out.append(rule)
    return out


def count_reproduced(chain: Sequence[TransformationRule], examples: Sequence[Example]) -> int:
    """How many training outputs the rules, applied in sequence, reproduce."""
    hits = 0
    for ex in examples:
        grid: Optional[Grid] = ex.input
        for rule in chain:
            grid = rule(grid)
            if grid is None:
                break
        if grid is not None and grid == ex.output:
            hits += 1
    return hits
