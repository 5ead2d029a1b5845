from .grid import Grid, INVALID_COLOR, BACKGROUND
from .particles import ParticleStore, EmissionBurst, PhotonEmission, SpectralClass
from .dynamics import DynamicsEngine, EmergentStats
from .diversity import DiversityController
from .clusters import Cluster, ClusterIdentifier
from .oracle import ClusterTransform, ValidityOracle
from .patterns import Pattern, PatternDetector
from .rules import Example, RuleType, TransformationRule
from .engine import Discovery, TransformationEngine
from .solver import NebulaSolver, solve_task

__all__ = [
    "Grid",
    "INVALID_COLOR",
    "BACKGROUND",
    "ParticleStore",
    "EmissionBurst",
    "PhotonEmission",
    "SpectralClass",
    "DynamicsEngine",
    "EmergentStats",
    "DiversityController",
    "Cluster",
    "ClusterIdentifier",
    "ClusterTransform",
    "ValidityOracle",
    "Pattern",
    "PatternDetector",
    "Example",
    "RuleType",
    "TransformationRule",
    "Discovery",
    "TransformationEngine",
    "NebulaSolver",
    "solve_task",
]
