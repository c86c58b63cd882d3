# src/medinet/schemas/profile.py
"""Composite profile payloads (user fields plus professional collections)."""

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Derived from professional records; ignored when supplied by callers.
DERIVED_USER_FIELDS = (
    "current_role",
    "years_of_experience",
    "medical_school_graduation_year",
    "residency_completion_year",
    "fellowship_completion_year",
)


class _Record(BaseModel):
    """Collection item; ``id`` identifies an existing row on update."""

    id: int | None = Field(None, gt=0)

    model_config = ConfigDict(extra="ignore")


class UserFieldsIn(BaseModel):
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    headline: str | None = Field(None, max_length=255)
    summary: str | None = Field(None, max_length=5000)
    location: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)
    website: str | None = Field(None, max_length=500)
    specialization: str | None = Field(None, max_length=255)
    subspecialization: str | None = Field(None, max_length=255)
    profile_image_url: str | None = Field(None, max_length=500)
    cover_image_url: str | None = Field(None, max_length=500)

    # Unknown and derived keys are dropped.
    model_config = ConfigDict(extra="ignore")


class ProfileFieldsIn(BaseModel):
    bio: str | None = Field(None, max_length=5000)
    languages: list[str] | None = None
    interests: list[str] | None = None
    causes: list[str] | None = None
    volunteer_experiences: list[dict[str, Any]] | None = None

    model_config = ConfigDict(extra="ignore")


class ExperienceIn(_Record):
    title: str = Field(..., min_length=1, max_length=255)
    position_type: str | None = None
    department: str | None = None
    specialty: str | None = None
    subspecialty: str | None = None
    institution_name: str | None = None
    institution_type: str | None = None
    location: str | None = None
    description: str | None = None
    start_date: date
    end_date: date | None = None
    is_current: bool = False
    patient_care_responsibilities: str | None = None
    research_focus_areas: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_dates(self) -> "ExperienceIn":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class EducationIn(_Record):
    degree_type: str = Field(..., min_length=1, max_length=100)
    field_of_study: str | None = None
    institution_name: str = Field(..., min_length=1, max_length=255)
    institution_type: str | None = None
    location: str | None = None
    program_name: str | None = None
    specialty: str | None = None
    subspecialty: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    graduation_date: date | None = None
    gpa: float | None = Field(None, ge=0)
    honors: list[str] = Field(default_factory=list)
    recognition: str | None = None
    description: str | None = None
    is_current: bool = False


class CertificationIn(_Record):
    certification_type: str | None = None
    name: str = Field(..., min_length=1, max_length=255)
    issuing_organization: str = Field(..., min_length=1, max_length=255)
    certification_board: str | None = None
    license_number: str | None = None
    credential_id: str | None = None
    issue_date: date | None = None
    expiration_date: date | None = None
    status: str = "Active"
    verification_url: str | None = None
    description: str | None = None


class PublicationIn(_Record):
    publication_type: str | None = None
    title: str = Field(..., min_length=1)
    authors: list[str] = Field(default_factory=list)
    author_order: int | None = Field(None, ge=1)
    journal_name: str | None = None
    publisher: str | None = None
    publication_date: date | None = None
    doi: str | None = None
    url: str | None = None
    abstract: str | None = None
    keywords: list[str] = Field(default_factory=list)
    impact_factor: float | None = Field(None, ge=0)
    citation_count: int = Field(0, ge=0)
    is_peer_reviewed: bool = False
    volume: str | None = None
    issue: str | None = None
    pages: str | None = None
    description: str | None = None


class ProjectIn(_Record):
    title: str = Field(..., min_length=1, max_length=255)
    project_type: str | None = None
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    is_current: bool = False
    role: str | None = None
    responsibilities: str | None = None
    outcomes: str | None = None
    technologies_used: list[str] = Field(default_factory=list)
    collaborators: list[str] = Field(default_factory=list)
    funding_source: str | None = None
    grant_number: str | None = None
    url: str | None = None


class AwardIn(_Record):
    title: str = Field(..., min_length=1, max_length=255)
    award_type: str | None = None
    issuing_organization: str | None = None
    description: str | None = None
    date_received: date | None = None
    year: int | None = Field(None, ge=1900, le=2200)
    monetary_value: float | None = Field(None, ge=0)
    currency: str | None = Field(None, max_length=10)
    url: str | None = None


class CompleteProfileIn(BaseModel):
    """Body of the composite create/update endpoints.

    ``skills`` items may be a bare name, ``{"id": ...}`` for an existing
    catalogue skill, or ``{"name", "category", "proficiency_level",
    "years_of_experience"}``; they are normalized by the profile service.
    A collection left out (``None``) is untouched on update.
    """

    user: UserFieldsIn | None = None
    profile: ProfileFieldsIn | None = None
    experiences: list[ExperienceIn] | None = None
    education: list[EducationIn] | None = None
    skills: list[str | dict[str, Any]] | None = None
    certifications: list[CertificationIn] | None = None
    publications: list[PublicationIn] | None = None
    projects: list[ProjectIn] | None = None
    awards: list[AwardIn] | None = None
