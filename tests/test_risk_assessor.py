import unittest

from parcel_insight.domain import FeatureKind, InfrastructureFeature, LatLng, Layer, RiskLevel, Severity
from parcel_insight.geometry import destination_point
from parcel_insight.risk_assessor import assess_risks, level_for_score, nearest_distance

CENTER = LatLng(lat=10.7769, lng=106.7009)


def _point(layer, distance_m, bearing=0, fid="f"):
    p = destination_point(CENTER, bearing, distance_m)
    return InfrastructureFeature(id=fid, name=fid, layer=layer, kind=FeatureKind.POINT, lat=p.lat, lng=p.lng)


class TestRiskAssessor(unittest.TestCase):
    def test_no_infrastructure_means_low_risk(self):
        result = assess_risks(CENTER, {})
        self.assertEqual(result.findings, [])
        self.assertEqual(result.risk_score, 0)
        self.assertEqual(result.overall_level, RiskLevel.LOW)

    def test_power_line_close_is_high(self):
        result = assess_risks(CENTER, {Layer.POWER: [_point(Layer.POWER, 150)]})
        self.assertEqual(len(result.findings), 1)
        finding = result.findings[0]
        self.assertEqual(finding.id, "power_close")
        self.assertEqual(finding.severity, Severity.HIGH)
        self.assertEqual(finding.icon, "power")
        self.assertEqual(result.risk_score, 25)
        self.assertEqual(result.overall_level, RiskLevel.MEDIUM)

    def test_outer_band_and_beyond(self):
        near = assess_risks(CENTER, {Layer.CEMETERY: [_point(Layer.CEMETERY, 600)]})
        self.assertEqual(near.findings[0].severity, Severity.LOW)
        self.assertEqual(near.risk_score, 5)
        far = assess_risks(CENTER, {Layer.CEMETERY: [_point(Layer.CEMETERY, 1500)]})
        self.assertEqual(far.findings, [])

    def test_only_nearest_feature_per_layer_counts(self):
        features = [_point(Layer.INDUSTRIAL, 1800, fid="far"), _point(Layer.INDUSTRIAL, 300, fid="near")]
        result = assess_risks(CENTER, {Layer.INDUSTRIAL: features})
        self.assertEqual([f.id for f in result.findings], ["industrial_close"])
        self.assertEqual(result.risk_score, 30)

    def test_combined_risks_reach_high_level(self):
        infrastructure = {
            Layer.INDUSTRIAL: [_point(Layer.INDUSTRIAL, 300)],
            Layer.POWER: [_point(Layer.POWER, 100)],
            Layer.CEMETERY: [_point(Layer.CEMETERY, 200)],
        }
        result = assess_risks(CENTER, infrastructure)
        self.assertEqual(result.risk_score, 75)
        self.assertEqual(result.overall_level, RiskLevel.HIGH)

    def test_moving_feature_closer_never_lowers_score(self):
        previous = -1
        for distance in (1500, 1000, 600, 400, 150):
            score = assess_risks(CENTER, {Layer.POWER: [_point(Layer.POWER, distance)],
                                          Layer.INDUSTRIAL: [_point(Layer.INDUSTRIAL, distance)]}).risk_score
            self.assertGreaterEqual(score, previous)
            previous = score

    def test_line_features_use_nearest_vertex(self):
        a = destination_point(CENTER, 90, 150)
        b = destination_point(CENTER, 90, 900)
        line = InfrastructureFeature(
            id="l", name="Power line", layer=Layer.POWER, kind=FeatureKind.LINE,
            geometry=[[[b.lng, b.lat], [a.lng, a.lat]]],
        )
        distance = nearest_distance(CENTER, [line])
        self.assertTrue(140 < distance < 160, distance)

    def test_level_thresholds(self):
        self.assertEqual(level_for_score(14), RiskLevel.LOW)
        self.assertEqual(level_for_score(15), RiskLevel.MEDIUM)
        self.assertEqual(level_for_score(39), RiskLevel.MEDIUM)
        self.assertEqual(level_for_score(40), RiskLevel.HIGH)


if __name__ == "__main__":
    unittest.main()
