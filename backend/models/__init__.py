from models.allocation_cycle import AllocationCycle
from models.base import Base
from models.final_assignment import FinalAssignment
from models.section_capacity import SectionCapacity
from models.student_preference import StudentPreference
from models.student_submission import StudentSubmission
from models.subject_offering import SubjectOffering
from models.user import User

__all__ = [
	"AllocationCycle",
	"Base",
	"FinalAssignment",
	"SectionCapacity",
	"StudentPreference",
	"StudentSubmission",
	"SubjectOffering",
	"User",
]
