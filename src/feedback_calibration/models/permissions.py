"""
Role-based permission model for feedback operations.

Determines who may delete a feedback record and who may run a calibration
analysis. Identity itself comes from the external session layer.
"""

from enum import Enum

from pydantic import BaseModel

from .database import FeedbackRecord


class UserRole(str, Enum):
    """Roles the engine distinguishes between."""
    EVALUATOR = "evaluator"
    ADMIN = "admin"


class Requester(BaseModel):
    """The authenticated caller of an engine operation."""
    user_id: str
    role: UserRole = UserRole.EVALUATOR

    @classmethod
    def from_flags(cls, user_id: str, is_admin: bool) -> "Requester":
        return cls(user_id=user_id, role=UserRole.ADMIN if is_admin else UserRole.EVALUATOR)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def can_delete_feedback(self, record: FeedbackRecord) -> bool:
        """Authors may delete their own feedback; admins may delete any."""
        return self.is_admin or record.evaluator_id == self.user_id

    def can_run_analysis(self) -> bool:
        return self.is_admin
