"""
Reference catalog entries
"""

from enum import Enum
from typing import Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class CatalogKind(str, Enum):
    DIAGNOSIS = "diagnosis"
    MEDICINE = "medicine"
    EXAMINATION = "examination"


class CatalogEntry(BaseModel):
    id: str = Field(default="", description="Stable identifier within its catalog")
    name: str = Field(default="", description="Canonical display name")
    keywords: Tuple[str, ...] = Field(default=(), description="Aliases used only for matching")

    model_config = ConfigDict(frozen=True)


class DiagnosisEntry(CatalogEntry):
    code: str = Field(default="", description="ICD-10 style code, not unique")


class MedicineEntry(CatalogEntry):
    generic_name: str = Field(default="")
    spec: str = Field(default="")
    price: float = Field(default=0.0)
    unit: str = Field(default="")
    type: str = Field(default="")


class ExaminationEntry(CatalogEntry):
    price: float = Field(default=0.0)
    category: str = Field(default="")


AnyCatalogEntry = Union[DiagnosisEntry, MedicineEntry, ExaminationEntry]


class MedicalCatalog(BaseModel):
    """Immutable reference tables, loaded once per process"""
    diagnoses: Tuple[DiagnosisEntry, ...] = ()
    medicines: Tuple[MedicineEntry, ...] = ()
    items: Tuple[ExaminationEntry, ...] = ()

    model_config = ConfigDict(frozen=True)

    def get_all_diagnoses(self) -> Tuple[DiagnosisEntry, ...]:
        return self.diagnoses

    def get_all_medicines(self) -> Tuple[MedicineEntry, ...]:
        return self.medicines

    def get_all_items(self) -> Tuple[ExaminationEntry, ...]:
        return self.items

    def entries_for(self, kind: CatalogKind) -> Tuple[AnyCatalogEntry, ...]:
        return {
            CatalogKind.DIAGNOSIS: self.diagnoses,
            CatalogKind.MEDICINE: self.medicines,
            CatalogKind.EXAMINATION: self.items,
        }[kind]
