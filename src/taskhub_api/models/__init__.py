"""
Import all models here to ensure proper initialization order.

They are imported in dependency order to avoid circular import issues.
"""

from taskhub_api.models.base import Base, BaseDBModel
from taskhub_api.models.users import UserDB, UserRole, UserStatus
from taskhub_api.models.projects import PermissionLevel, ProjectDB, ProjectStatus, ProjectUserDB
from taskhub_api.models.tasks import TagDB, TaskDB, TaskPriority, TaskStatus, task_tags
from taskhub_api.models.time_sessions import TimeSessionDB
from taskhub_api.models.quick_links import LinkCategory, QuickLinkDB
from taskhub_api.models.auth_sessions import AuthSessionDB
from taskhub_api.models.user_activities import UserActivityDB

__all__ = [
    "Base",
    "BaseDBModel",
    "UserDB",
    "UserRole",
    "UserStatus",
    "ProjectDB",
    "ProjectStatus",
    "ProjectUserDB",
    "PermissionLevel",
    "TaskDB",
    "TaskStatus",
    "TaskPriority",
    "TagDB",
    "task_tags",
    "TimeSessionDB",
    "QuickLinkDB",
    "LinkCategory",
    "AuthSessionDB",
    "UserActivityDB",
]
