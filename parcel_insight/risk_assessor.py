"""Distance-tiered risk rules over nearby infrastructure."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional

from .domain import FeatureKind, InfrastructureFeature, LatLng, Layer, RiskAssessment, RiskFinding, RiskLevel, Severity
from .geometry import distance_meters
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="risk_assessor")

MAX_RISK_SCORE = 100
HIGH_LEVEL_THRESHOLD = 40
MEDIUM_LEVEL_THRESHOLD = 15


@dataclass(frozen=True)
class ProximityRule:
    """Two distance bands for one layer: a close (high) band and an outer band."""
    layer: Layer
    icon: str
    label: str
    close_m: float
    close_points: int
    outer_m: float
    outer_severity: Severity
    outer_points: int


RISK_RULES: tuple[ProximityRule, ...] = (
    ProximityRule(Layer.INDUSTRIAL, "pollution", "industrial zone", 500, 30, 2000, Severity.MEDIUM, 15),
    ProximityRule(Layer.POWER, "power", "high-voltage power infrastructure", 200, 25, 500, Severity.MEDIUM, 10),
    ProximityRule(Layer.CEMETERY, "cemetery", "cemetery", 300, 20, 1000, Severity.LOW, 5),
)


def _feature_distance(center: LatLng, feature: InfrastructureFeature) -> Optional[float]:
    """Distance to a point feature, or to the closest vertex of a line feature."""
    if feature.kind is FeatureKind.POINT or not feature.geometry:
        if feature.lat is None or feature.lng is None:
            return None
        return distance_meters(center, LatLng(lat=feature.lat, lng=feature.lng))
    distances = [
        distance_meters(center, LatLng(lat=lat, lng=lng))
        for line in feature.geometry
        for lng, lat in line
    ]
    return min(distances) if distances else None


def nearest_distance(center: LatLng, features: Iterable[InfrastructureFeature]) -> Optional[float]:
    """Distance in meters to the closest feature, or None if none has a position."""
    distances = [d for d in (_feature_distance(center, f) for f in features) if d is not None]
    return min(distances) if distances else None


def _finding(rule: ProximityRule, distance: float) -> Optional[tuple[RiskFinding, int]]:
    rounded = int(round(distance))
    if distance < rule.close_m:
        return RiskFinding(
            id=f"{rule.layer.value}_close",
            severity=Severity.HIGH,
            title=f"Very close to {rule.label}",
            description=f"The parcel is about {rounded} m from a {rule.label} (under {int(rule.close_m)} m).",
            distance=rounded,
            icon=rule.icon,
        ), rule.close_points
    if distance < rule.outer_m:
        return RiskFinding(
            id=f"{rule.layer.value}_near",
            severity=rule.outer_severity,
            title=f"Near {rule.label}",
            description=f"A {rule.label} lies about {rounded} m away (within {int(rule.outer_m)} m).",
            distance=rounded,
            icon=rule.icon,
        ), rule.outer_points
    return None


def level_for_score(score: int) -> RiskLevel:
    if score >= HIGH_LEVEL_THRESHOLD:
        return RiskLevel.HIGH
    if score >= MEDIUM_LEVEL_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def assess_risks(
    center: LatLng,
    infrastructure: Mapping[Layer, List[InfrastructureFeature]],
    rules: Iterable[ProximityRule] = RISK_RULES,
) -> RiskAssessment:
    """Apply proximity rules to the nearest feature of each risk layer.

    Layers that were not fetched, or whose nearest feature is beyond the
    outer band, produce no finding.
    """
    findings: List[RiskFinding] = []
    score = 0
    for rule in rules:
        features = infrastructure.get(rule.layer) or []
        distance = nearest_distance(center, features)
        if distance is None:
            continue
        outcome = _finding(rule, distance)
        if outcome is None:
            continue
        finding, points = outcome
        findings.append(finding)
        score += points

    score = min(MAX_RISK_SCORE, score)
    assessment = RiskAssessment(findings=findings, overall_level=level_for_score(score), risk_score=score)
    logger.debug("Assessed risks", extra={"risk_score": score, "findings": [f.id for f in findings]})
    return assessment
