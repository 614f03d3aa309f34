"""
Pydantic schemas for project-related operations.
"""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskhub_api.models.projects import PermissionLevel, ProjectStatus

COLOR_PATTERN = re.compile(r"^(--[\w-]+|#[0-9A-Fa-f]{6})$")


def _validate_name(v: str | None) -> str | None:
    if v is not None and "/" in v:
        raise ValueError("Project name cannot contain '/'")
    return v


def _validate_color(v: str | None) -> str | None:
    if v and not COLOR_PATTERN.match(v):
        raise ValueError("Color must be a valid CSS variable (--nord8) or hex color (#88c0d0)")
    return v


class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    color: str | None = Field("--nord8", max_length=50)
    is_public: bool = True

    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=True)

    @field_validator("name")
    @classmethod
    def name_has_no_separator(cls, v):
        return _validate_name(v)

    @field_validator("color")
    @classmethod
    def color_is_valid(cls, v):
        return _validate_color(v)


class ProjectCreate(ProjectBase):
    parent_id: int | None = None
    is_active: bool = True
    is_expanded: bool = True


class ProjectUpdate(BaseModel):
    """All fields optional. A parent_id in the payload moves the project."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    color: str | None = Field(None, max_length=50)
    status: ProjectStatus | None = None
    is_public: bool | None = None
    is_active: bool | None = None
    is_expanded: bool | None = None
    parent_id: int | None = None

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("name")
    @classmethod
    def name_has_no_separator(cls, v):
        return _validate_name(v)

    @field_validator("color")
    @classmethod
    def color_is_valid(cls, v):
        return _validate_color(v)


class ProjectMove(BaseModel):
    new_parent_id: int | None = Field(None, description="None moves the project to the root level")


class ProjectExpandedUpdate(BaseModel):
    project_id: int
    is_expanded: bool


class ProjectResponse(ProjectBase):
    """Response schema, aka returned by API endpoints."""

    id: int
    status: ProjectStatus
    is_active: bool
    created_by: int | None
    parent_id: int | None
    path: str
    depth: int
    is_expanded: bool
    created_at: datetime
    updated_at: datetime


class ProjectDirectStatsResponse(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    total_minutes: int = 0


class ProjectSubtreeStatsResponse(ProjectDirectStatsResponse):
    project_id: int
    subproject_count: int = 0
    direct: ProjectDirectStatsResponse


class VisibleProjectResponse(ProjectResponse):
    """A project as seen by a user. user_permission is None when visible only because it is public."""

    user_permission: PermissionLevel | None = None


class ProjectTreeNodeResponse(ProjectResponse):
    children: list["ProjectTreeNodeResponse"] = Field(default_factory=list)
    has_children: bool = False
    direct_stats: ProjectDirectStatsResponse | None = None
    subtree_stats: ProjectDirectStatsResponse | None = None


class ProjectTreeEntryResponse(ProjectResponse):
    """Flat map entry, children are referenced by id to keep the payload from repeating subtrees."""

    child_ids: list[int] = Field(default_factory=list)
    direct_stats: ProjectDirectStatsResponse | None = None
    subtree_stats: ProjectDirectStatsResponse | None = None


class ProjectTreeResponse(BaseModel):
    roots: list[ProjectTreeNodeResponse]
    flat_map: dict[int, ProjectTreeEntryResponse]
    max_depth: int


class ProjectArchiveRequest(BaseModel):
    cascade: bool = False


class ProjectArchiveResponse(BaseModel):
    archived_count: int
    project: ProjectResponse


class ProjectDeleteResponse(BaseModel):
    message: str = "Project deleted successfully"
    project: ProjectResponse


### ProjectUser (permission grant) Schemas below ###


class ProjectUserGrant(BaseModel):
    """Grant a user access to a project, the user is looked up by username or email."""

    username: str | None = Field(None, min_length=1, max_length=100)
    user_email: str | None = Field(None, min_length=3, max_length=255)
    permission_level: PermissionLevel = Field(..., description="Permission level of the user in the project")


class ProjectUserUpdate(BaseModel):
    permission_level: PermissionLevel = Field(..., description="Permission level of the user in the project")


class ProjectUserResponse(BaseModel):
    """Response schema, aka returned by API endpoints."""

    user_id: int
    username: str
    email: str | None
    permission_level: PermissionLevel
    granted_by: int | None
    granted_at: datetime
