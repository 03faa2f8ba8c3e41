"""
Pydantic models for fact checks and risk analysis
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class FactCheckType(str, Enum):
    DIAGNOSIS = "diagnosis"
    MEDICINE = "medicine"
    EXAMINATION = "examination"
    MEDICAL_RECORD = "medical_record"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FactCheckIssue(BaseModel):
    """One validated finding of a fact check"""
    id: str = Field(description="Type prefix, check timestamp and ordinal")
    type: FactCheckType
    severity: Severity = Severity.MEDIUM
    content: str = Field(default="", description="The questionable original content")
    issue: str = Field(description="Description of the problem")
    suggestion: Optional[str] = Field(default=None, description="Suggested correction")


class FactCheckResult(BaseModel):
    has_issues: bool = False
    issues: List[FactCheckIssue] = Field(default_factory=list)
    checked_at: int = Field(description="Epoch milliseconds of the check")


class DiagnosisCheckContext(BaseModel):
    diagnosis: str
    chief_complaint: Optional[str] = None
    history_of_present_illness: Optional[str] = None
    symptoms: List[str] = Field(default_factory=list)


class MedicineCheckContext(BaseModel):
    medicine_name: str
    specification: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    diagnosis: Optional[str] = None


class ExaminationCheckContext(BaseModel):
    examination_name: str
    category: Optional[str] = None
    diagnosis: Optional[str] = None
    symptoms: List[str] = Field(default_factory=list)


class MedicalRecordCheckContext(BaseModel):
    chief_complaint: Optional[str] = None
    history_of_present_illness: Optional[str] = None
    diagnoses: List[str] = Field(default_factory=list)
    medicines: List[str] = Field(default_factory=list)
    examinations: List[str] = Field(default_factory=list)


class RiskCategory(str, Enum):
    ALLERGY = "allergy"
    CHRONIC = "chronic"
    MEDICATION = "medication"
    POPULATION = "population"
    VITAL = "vital"
    OTHER = "other"


class RiskItem(BaseModel):
    level: int = Field(ge=1, le=3, description="1=high, 2=medium, 3=low")
    category: RiskCategory
    content: str = Field(min_length=1)


class PatientRiskContext(BaseModel):
    patient_name: str = ""
    gender: str = ""
    age: str = ""
    chief_complaint: Optional[str] = None
    history_of_present_illness: Optional[str] = None
    past_medical_history: Optional[str] = None
    allergy_history: Optional[str] = None
    diagnosis: Optional[str] = None
