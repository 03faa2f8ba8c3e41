"""
Reference catalog loading (diagnoses, medicines, examination items)
"""

import csv
from pathlib import Path
from typing import Iterable, Mapping, Optional, Tuple

from consult_assist.core.logging import get_logger
from consult_assist.models.catalog import (
    DiagnosisEntry,
    ExaminationEntry,
    MedicalCatalog,
    MedicineEntry,
)

logger = get_logger(__name__)

Row = Mapping[str, Optional[str]]

CATALOG_FILES = {
    "diagnoses": "diagnoses.csv",
    "medicines": "medicines.csv",
    "items": "items.csv",
}


def _text(row: Row, column: str) -> str:
    value = row.get(column)
    return value.strip() if isinstance(value, str) else ""


def _price(row: Row) -> float:
    try:
        return float(_text(row, "price"))
    except ValueError:
        return 0.0


def parse_keywords(raw: Optional[str]) -> Tuple[str, ...]:
    """Split a pipe-delimited alias column, dropping blanks."""
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split("|") if part.strip())


def _diagnosis(row: Row) -> DiagnosisEntry:
    return DiagnosisEntry(
        id=_text(row, "id"),
        code=_text(row, "code"),
        name=_text(row, "name"),
        keywords=parse_keywords(row.get("keywords")),
    )


def _medicine(row: Row) -> MedicineEntry:
    return MedicineEntry(
        id=_text(row, "id"),
        name=_text(row, "name"),
        generic_name=_text(row, "genericName"),
        spec=_text(row, "spec"),
        price=_price(row),
        unit=_text(row, "unit"),
        type=_text(row, "type"),
        keywords=parse_keywords(row.get("keywords")),
    )


def _examination(row: Row) -> ExaminationEntry:
    return ExaminationEntry(
        id=_text(row, "id"),
        name=_text(row, "name"),
        price=_price(row),
        category=_text(row, "category"),
        keywords=parse_keywords(row.get("keywords")),
    )


def load_catalog(raw_tables: Mapping[str, Iterable[Row]]) -> MedicalCatalog:
    """
    Build the immutable catalog from three row sets keyed ``diagnoses``,
    ``medicines`` and ``items``. Missing columns become empty strings.
    """
    catalog = MedicalCatalog(
        diagnoses=tuple(_diagnosis(row) for row in raw_tables.get("diagnoses", ())),
        medicines=tuple(_medicine(row) for row in raw_tables.get("medicines", ())),
        items=tuple(_examination(row) for row in raw_tables.get("items", ())),
    )
    logger.info(
        "Reference catalog loaded",
        diagnoses=len(catalog.diagnoses),
        medicines=len(catalog.medicines),
        items=len(catalog.items),
    )
    return catalog


def _read_rows(path: Path) -> list:
    if not path.exists():
        logger.warning(f"Catalog table not found, using an empty table: {path}")
        return []
    with path.open(newline="", encoding="utf-8-sig") as f:
        # restval covers rows with missing trailing fields
        return list(csv.DictReader(f, restval=""))


def load_catalog_from_dir(directory: str) -> MedicalCatalog:
    """Load ``diagnoses.csv``, ``medicines.csv`` and ``items.csv`` from a directory."""
    base = Path(directory).expanduser()
    return load_catalog({table: _read_rows(base / filename) for table, filename in CATALOG_FILES.items()})
