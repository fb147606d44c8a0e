from pydantic import BaseModel, Field
from typing import Dict, List


class FacultyConflictReport(BaseModel):
    valid: bool
    conflicts: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class LabPlacementReport(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    lab_days_by_name: Dict[str, List[int]] = Field(default_factory=dict)  # lab name -> day indices


class TotalHoursCheck(BaseModel):
    ok: bool
    total: int
    capacity: int
