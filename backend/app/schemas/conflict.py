from pydantic import BaseModel
from typing import Literal, List, Optional

class ConflictDetail(BaseModel):
    id: str
    conflict_type: Literal[
        "teacher_conflict",
        "double_period",
        "slot_invariant",
    ]
    description: str
    severity: Literal["hard", "soft"]
    teacher_id: Optional[str] = None
    day: Optional[str] = None
    period: Optional[int] = None
    class_ids: List[str]
    affected_slots: List[str]  # List of timetable slot IDs involved

class ConflictReport(BaseModel):
    term_id: str
    conflicts: List[ConflictDetail]
