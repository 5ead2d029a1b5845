# nebula/proposers.py
"""
Rule proposers
==============
Each proposer looks at the training pairs and suggests zero or more
parameterised TransformationRules. Proposers never score their output:
validation against the training pairs decides which candidates survive,
so a new heuristic only has to be registered here.

    registry = ProposerRegistry.build()
    registry.register(ProposerDescriptor("my_heuristic", my_fn))
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from nebula import transforms
from nebula.config import EngineConfig
from nebula.grid import BACKGROUND, Grid
from nebula.patterns import PatternDetector, components
from nebula.rules import Example, RuleType, TransformationRule, identity_rule

logger = logging.getLogger(__name__)


@dataclass
class ProposalContext:
    config:   EngineConfig = field(default_factory=EngineConfig)
    detector: PatternDetector = field(default_factory=PatternDetector)
    votes:    Dict[str, int] = field(default_factory=dict)


class RuleProposer(Protocol):
    name: str

    def propose(self, examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
        ...


ProposeFn = Callable[[Sequence[Example], ProposalContext], List[TransformationRule]]


@dataclass(frozen=True)
class ProposerDescriptor:
    name: str
    fn:   ProposeFn

    def propose(self, examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
        try:
            rules = self.fn(examples, context) or []
        except Exception as exc:
            logger.debug("Proposer %s failed: %s", self.name, exc)
            return []
        for rule in rules:
            rule.source = rule.source or self.name
        return rules


class ProposerRegistry:
    """Ordered registry of rule proposers. `ProposerRegistry.build()` gives the default set."""

    def __init__(self) -> None:
        self._store: Dict[str, RuleProposer] = {}

    def register(self, proposer: RuleProposer) -> None:
        if proposer.name in self._store:
            raise KeyError(f"Proposer '{proposer.name}' already registered.")
        self._store[proposer.name] = proposer

    def get(self, name: str) -> Optional[RuleProposer]:
        return self._store.get(name)

    def all(self) -> Iterator[RuleProposer]:
        return iter(self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def propose(self, examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
        out: List[TransformationRule] = []
        for proposer in self.all():
            rules = proposer.propose(examples, context)
            logger.debug("Proposer %s suggested %d rules", proposer.name, len(rules))
            out.extend(rules)
        return out

    @classmethod
    def build(cls) -> "ProposerRegistry":
        reg = cls()
        for name, fn in [
            ("identity",      propose_identity),
            ("translation",   propose_translation),
            ("rotation",      propose_rotation),
            ("reflection",    propose_reflection),
            ("scaling",       propose_scaling),
            ("color_mapping", propose_color_mapping),
            ("pattern_fill",  propose_pattern_fill),
            ("symmetry",      propose_symmetry),
            ("connectivity",  propose_connectivity),
        ]:
            reg.register(ProposerDescriptor(name, fn))
        return reg


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _same_shape(examples: Sequence[Example]) -> List[Example]:
    return [ex for ex in examples if ex.input.shape == ex.output.shape]


def _matches_any(rule: TransformationRule, examples: Sequence[Example]) -> bool:
    return any(rule.reproduces(ex) for ex in examples)


def _added_color(ex: Example) -> Optional[int]:
    """The single color written onto changed cells, if there is exactly one."""
    changed = ex.input.data != ex.output.data
    colors = np.unique(ex.output.data[changed])
    if len(colors) == 1:
        return int(colors[0])
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Proposers
# ─────────────────────────────────────────────────────────────────────────────

def propose_identity(examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
    return [identity_rule(confidence=0.0)]


def propose_translation(examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
    """
    Offset between the content bounding boxes of each pair; when boxes
    disagree in size (content clipped at the border) fall back to a windowed
    search on the first pair.
    """
    pairs = _same_shape(examples)
    offsets: List[Tuple[int, int]] = []
    for ex in pairs:
        a, b = ex.input.content_bbox(), ex.output.content_bbox()
        if a is None or b is None:
            continue
        if (a[2] - a[0], a[3] - a[1]) == (b[2] - b[0], b[3] - b[1]):
            offset = (b[0] - a[0], b[1] - a[1])
            if offset != (0, 0) and offset not in offsets:
                offsets.append(offset)

    if not offsets and pairs:
        offsets.extend(_search_offsets(pairs[0], context.config.max_translation))

    return [
        TransformationRule(RuleType.TRANSLATION, {"dx": dx, "dy": dy})
        for dx, dy in offsets
    ]


def _search_offsets(ex: Example, limit: int) -> List[Tuple[int, int]]:
    h, w = ex.input.shape
    rx = min(limit, w - 1)
    ry = min(limit, h - 1)
    found = []
    for dy in range(-ry, ry + 1):
        for dx in range(-rx, rx + 1):
            if (dx, dy) == (0, 0):
                continue
            if transforms.translate(ex.input, dx, dy) == ex.output:
                found.append((dx, dy))
    # smallest shift first
    found.sort(key=lambda o: abs(o[0]) + abs(o[1]))
    return found[:1]


def propose_rotation(examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
    rules = [TransformationRule(RuleType.ROTATION, {"quarter_turns": k}) for k in (1, 2, 3)]
    return [r for r in rules if _matches_any(r, examples)]


def propose_reflection(examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
    rules = [TransformationRule(RuleType.REFLECTION, {"axis": axis}) for axis in transforms.REFLECTION_AXES]
    return [r for r in rules if _matches_any(r, examples)]


def propose_scaling(examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
    if not examples or all(ex.input.shape == ex.output.shape for ex in examples):
        return []
    first = examples[0].output
    rules = [TransformationRule(RuleType.SCALING, {"width": first.width, "height": first.height})]

    factors = set()
    for ex in examples:
        ih, iw = ex.input.shape
        oh, ow = ex.output.shape
        if ih == 0 or iw == 0 or oh % ih or ow % iw or oh // ih != ow // iw:
            factors = set()
            break
        factors.add(oh // ih)
    if len(factors) == 1:
        factor = factors.pop()
        if factor > 1:
            rules.append(TransformationRule(RuleType.SCALING, {"factor": factor}))
    return rules


def propose_color_mapping(examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
    """Color map read off the first same-shaped pair; first mapping seen wins."""
    pairs = _same_shape(examples)
    if not pairs:
        return []
    ex = pairs[0]
    src, dst = ex.input.data, ex.output.data
    mismatch = src != dst
    mapping: Dict[int, int] = {}
    for a, b in zip(src[mismatch].tolist(), dst[mismatch].tolist()):
        mapping.setdefault(int(a), int(b))
    if not mapping:
        return []
    return [TransformationRule(RuleType.COLOR_MAPPING, {"mapping": mapping})]


def propose_pattern_fill(examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
    pairs = _same_shape(examples)
    if not pairs:
        return []
    cfg = context.config
    detector = context.detector
    rules: List[TransformationRule] = []

    if any(detector.rectangles(ex.input) for ex in pairs):
        rules.append(TransformationRule(
            RuleType.PATTERN_FILL,
            {"edit": "fill_rectangles", "color": None, "threshold": cfg.pattern_threshold},
        ))
        learned = {_added_color(ex) for ex in pairs if ex.input != ex.output}
        if len(learned) == 1 and None not in learned:
            rules.append(TransformationRule(
                RuleType.PATTERN_FILL,
                {"edit": "fill_rectangles", "color": learned.pop(), "threshold": cfg.pattern_threshold},
            ))

    if any(detector.lines(ex.input) for ex in pairs):
        rules.append(TransformationRule(
            RuleType.PATTERN_FILL,
            {"edit": "extend_lines", "threshold": cfg.line_threshold},
        ))
    return rules


def propose_symmetry(examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
    pairs = _same_shape(examples)
    if not pairs:
        return []
    axes = []
    if all(ex.output.has_horizontal_symmetry() for ex in pairs):
        axes.append("horizontal")
    if all(ex.output.has_vertical_symmetry() for ex in pairs):
        axes.append("vertical")
    if all(ex.output.has_diagonal_symmetry() for ex in pairs):
        axes.append("diagonal")
    if not axes:
        return []
    return [TransformationRule(RuleType.SYMMETRY, {"axes": axes})]


def propose_connectivity(examples: Sequence[Example], context: ProposalContext) -> List[TransformationRule]:
    pairs = _same_shape(examples)
    changed = [
        ex for ex in pairs
        if len(components(ex.output)) != len(components(ex.input))
        and ((ex.input.data == BACKGROUND) | (ex.input.data == ex.output.data)).all()
    ]
    if not changed:
        return []
    rules = [TransformationRule(RuleType.CONNECTIVITY, {"color": None})]
    learned = {_added_color(ex) for ex in changed}
    if len(learned) == 1 and None not in learned:
        rules.append(TransformationRule(RuleType.CONNECTIVITY, {"color": learned.pop()}))
    return rules
