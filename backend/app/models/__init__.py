from app.models.absence_event import AbsenceEvent, AbsenceStatus, DayPortion, LeaveType  # noqa: F401
from app.models.activity_log import ActivityLog  # noqa: F401
from app.models.class_section import ClassSection  # noqa: F401
from app.models.notification import Notification, NotificationType  # noqa: F401
from app.models.replacement_offer import ReplacementOffer, ReplacementOfferStatus  # noqa: F401
from app.models.replacement_workflow import (  # noqa: F401
    TERMINAL_WORKFLOW_STATUSES,
    ReplacementWorkflow,
    ReplacementWorkflowStatus,
)
from app.models.subject_requirement import SubjectRequirement  # noqa: F401
from app.models.teacher import Teacher  # noqa: F401
from app.models.teacher_availability import TeacherAvailability  # noqa: F401
from app.models.term import Term  # noqa: F401
from app.models.timetable_slot import SlotKind, SlotSource, TimetableSlot  # noqa: F401
