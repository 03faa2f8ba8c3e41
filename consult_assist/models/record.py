"""
Pydantic models for generated medical record drafts
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from consult_assist.models.catalog import DiagnosisEntry, ExaminationEntry, MedicineEntry


class DraftDiagnosis(BaseModel):
    name: str
    code: Optional[str] = None
    matched: bool = False
    match_score: Optional[float] = None
    catalog_entry: Optional[DiagnosisEntry] = None


class DraftMedication(BaseModel):
    name: str
    spec: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    usage: Optional[str] = None
    count: Optional[str] = None
    matched: bool = False
    match_score: Optional[float] = None
    catalog_entry: Optional[MedicineEntry] = None


class DraftExamination(BaseModel):
    name: str
    goal: Optional[str] = None
    matched: bool = False
    match_score: Optional[float] = None
    catalog_entry: Optional[ExaminationEntry] = None


class MedicalRecordDraft(BaseModel):
    """Structured record drafted from a consultation transcript"""
    chief_complaint: str = ""
    history_of_present_illness: str = ""
    past_medical_history: str = ""
    diagnoses: List[DraftDiagnosis] = Field(default_factory=list)
    medications: List[DraftMedication] = Field(default_factory=list)
    examinations: List[DraftExamination] = Field(default_factory=list)
    treatment_plan: str = ""
    health_education: str = ""
