"""Overall score and recommendation aggregation for one image."""
import pytest

from app.schemas.dimensions import CropHealth, DiseaseAnalysis, GrowthStage, PestAnalysis, SoilQuality
from app.services.crop_analysis import (
    LOW_HEALTH_NOTE,
    MAX_RECOMMENDATIONS,
    build_recommendations,
    calculate_overall_score,
)


def test_penalties_then_clamp_worst_case():
    score = calculate_overall_score(
        CropHealth(health_score=100),
        DiseaseAnalysis(diseases_detected=True, affected_area_percentage=100),
        PestAnalysis(pests_detected=True, damage_percentage=100),
        GrowthStage(growth_stage="mature", development_percentage=100),
    )
    assert score == pytest.approx(20.0)


def test_growth_scaling_is_applied_after_penalties():
    score = calculate_overall_score(
        CropHealth(health_score=80),
        DiseaseAnalysis(diseases_detected=True, affected_area_percentage=20),
        PestAnalysis(pests_detected=False, damage_percentage=90),
        GrowthStage(growth_stage="seedling", development_percentage=50),
    )
    # (80 - 20*0.5) * 0.5; pest damage ignored because no pests were detected
    assert score == pytest.approx(35.0)


def test_missing_health_counts_as_zero_and_clamps_at_zero():
    score = calculate_overall_score(
        None,
        DiseaseAnalysis(diseases_detected=True, affected_area_percentage=40),
        None,
        None,
    )
    assert score == 0.0


def test_missing_development_percentage_means_full_development():
    growth = GrowthStage(growth_stage="flowering")
    assert calculate_overall_score(CropHealth(health_score=64), None, None, growth) == pytest.approx(64.0)
    assert calculate_overall_score(CropHealth(health_score=64), None, None, None) == pytest.approx(64.0)


def test_zero_development_percentage_is_kept():
    growth = GrowthStage(growth_stage="germination", development_percentage=0)
    assert calculate_overall_score(CropHealth(health_score=90), None, None, growth) == 0.0


def test_detected_disease_without_area_has_no_penalty():
    disease = DiseaseAnalysis(diseases_detected=True, disease_types=["rust"])
    assert calculate_overall_score(CropHealth(health_score=75), disease, None, None) == pytest.approx(75.0)


def test_recommendations_fixed_order():
    recs = build_recommendations(
        CropHealth(health_score=55),
        DiseaseAnalysis(diseases_detected=True, recommended_treatments=["Apply fungicide"]),
        PestAnalysis(pests_detected=True, control_methods=["Release ladybugs"]),
        GrowthStage(growth_stage="vegetative", stage_specific_needs=["Side-dress nitrogen"]),
        SoilQuality(improvement_needs=["Add compost"]),
    )
    assert recs == [
        LOW_HEALTH_NOTE,
        "Apply fungicide",
        "Release ladybugs",
        "Side-dress nitrogen",
        "Add compost",
    ]


def test_recommendations_skip_undetected_issues_and_healthy_crop():
    recs = build_recommendations(
        CropHealth(health_score=70),
        DiseaseAnalysis(diseases_detected=False, recommended_treatments=["Apply fungicide"]),
        PestAnalysis(pests_detected=False, control_methods=["Spray neem oil"]),
        None,
        SoilQuality(improvement_needs=["Reduce tillage"]),
    )
    assert recs == ["Reduce tillage"]


def test_no_attention_note_without_health_record():
    assert build_recommendations(None, None, None, None, None) == []


def test_recommendations_truncated_in_order():
    recs = build_recommendations(
        CropHealth(health_score=10),
        DiseaseAnalysis(diseases_detected=True, recommended_treatments=[f"treat-{i}" for i in range(6)]),
        PestAnalysis(pests_detected=True, control_methods=[f"pest-{i}" for i in range(6)]),
        GrowthStage(growth_stage="mature", stage_specific_needs=["harvest soon"]),
        SoilQuality(improvement_needs=["lime"]),
    )
    assert len(recs) == MAX_RECOMMENDATIONS
    assert recs[0] == LOW_HEALTH_NOTE
    assert recs[1:7] == [f"treat-{i}" for i in range(6)]
    assert recs[7:] == ["pest-0", "pest-1", "pest-2"]
