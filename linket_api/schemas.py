"""Pydantic schemas for API requests and responses."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# POST /api/linkets/claim
# ============================================================================


class ClaimRequest(BaseModel):
    """Claim a tag by claim code, chip UID or public token."""

    model_config = ConfigDict(populate_by_name=True)

    claim_code: Optional[str] = Field(None, alias="claimCode", max_length=128)
    chip_uid: Optional[str] = Field(None, alias="chipUid", max_length=128)
    token: Optional[str] = Field(None, max_length=128)
    profile_id: Optional[str] = Field(None, alias="profileId", max_length=64)
    nickname: Optional[str] = Field(None, max_length=200)

    @property
    def code(self) -> Optional[str]:
        """First non-blank credential, claim code preferred."""
        for value in (self.claim_code, self.chip_uid, self.token):
            if value and value.strip():
                return value
        return None


class ClaimResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    assignment_id: str = Field(..., alias="assignmentId")


# ============================================================================
# /api/dashboard/linkets
# ============================================================================


class AssignmentUpdateRequest(BaseModel):
    """Owner edits; only fields present in the body are applied."""

    nickname: Optional[str] = Field(None, max_length=80)
    target_type: Optional[Literal["profile", "url"]] = None
    profile_id: Optional[str] = Field(None, max_length=64)
    target_url: Optional[str] = Field(None, max_length=2048)

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class AssignmentUpdateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    assignment_id: str = Field(..., alias="assignmentId")


class LinketSummary(BaseModel):
    """One claimed tag as shown on the dashboard."""

    assignment_id: str
    tag_id: str
    token: str
    status: str
    nickname: Optional[str] = None
    target_type: str = "profile"
    target_url: Optional[str] = None
    profile_id: Optional[str] = None
    last_redirected_at: Optional[str] = None


class ProfileSummary(BaseModel):
    id: str
    handle: str
    name: Optional[str] = None
    is_active: bool


class DashboardLinketsResponse(BaseModel):
    linkets: list[LinketSummary]
    profiles: list[ProfileSummary]


class OkResponse(BaseModel):
    ok: bool = True


class AccountDeleteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    released_tags: int = Field(0, alias="releasedTags")


# ============================================================================
# POST /api/profile-links/click
# ============================================================================


class ProfileLinkClickRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    link_id: Optional[str] = Field(None, alias="linkId", max_length=64)


# ============================================================================
# GET /api/admin/mint/next-batch
# ============================================================================


class NextBatchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    next_index: int = Field(..., alias="nextIndex")
    date: str


# ============================================================================
# POST /api/admin/tags/{tag_id}/retire
# ============================================================================


class TagRetireResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    tag_id: str = Field(..., alias="tagId")
    status: str


# ============================================================================
# Errors
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    ``error`` repeats the short user-facing message for clients that only
    read that field.
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
    error: Optional[str] = Field(None, description="Short user-facing message")
