"""
Structured records returned by the vision model, one per analysis dimension.

Required fields are the ones the scoring and summary logic branch on; the rest
are descriptive and optional. Anything that does not validate is a
SchemaViolation, never coerced.
"""
from pydantic import BaseModel, ConfigDict, Field


class _DimensionRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    confidence: float | None = None


class CropHealth(_DimensionRecord):
    health_score: float = Field(ge=0, le=100)
    vegetation_density: float | None = None
    stress_indicators: list[str] = Field(default_factory=list)
    color_analysis: str | None = None
    leaf_condition: str | None = None
    water_status: str | None = None
    nutrient_status: str | None = None


class DiseaseAnalysis(_DimensionRecord):
    diseases_detected: bool
    disease_types: list[str] = Field(default_factory=list)
    severity_level: str | None = None
    affected_area_percentage: float | None = Field(default=None, ge=0, le=100)
    symptoms_observed: list[str] = Field(default_factory=list)
    treatment_urgency: str | None = None
    recommended_treatments: list[str] = Field(default_factory=list)


class PestAnalysis(_DimensionRecord):
    pests_detected: bool
    pest_types: list[str] = Field(default_factory=list)
    infestation_level: str | None = None
    damage_patterns: list[str] = Field(default_factory=list)
    life_stages_present: list[str] = Field(default_factory=list)
    damage_percentage: float | None = Field(default=None, ge=0, le=100)
    control_methods: list[str] = Field(default_factory=list)
    intervention_timing: str | None = None


class GrowthStage(_DimensionRecord):
    growth_stage: str
    development_percentage: float | None = Field(default=None, ge=0, le=100)
    uniformity_score: float | None = None
    days_to_harvest: float | None = None
    stage_specific_needs: list[str] = Field(default_factory=list)
    development_issues: list[str] = Field(default_factory=list)
    optimal_conditions: str | None = None


class SoilQuality(_DimensionRecord):
    soil_texture: str | None = None
    moisture_level: str | None = None
    erosion_risk: str | None = None
    organic_matter: str | None = None
    compaction_level: str | None = None
    drainage_quality: str | None = None
    improvement_needs: list[str] = Field(default_factory=list)
