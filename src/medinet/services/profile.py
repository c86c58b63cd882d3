"""Composite profile assembly and derived profile fields.

A composite write touches the user row, the profile row, every professional
collection and the skill catalogue in one transaction, then recomputes the
derived user fields from what was stored.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from medinet.core.errors import ConflictError, ForbiddenError, NotFoundError
from medinet.db.time import as_utc
from medinet.models import (
    Award,
    Certification,
    MedicalEducation,
    MedicalExperience,
    MedicalSkill,
    Profile,
    Project,
    Publication,
    User,
    UserSkill,
)
from medinet.schemas.profile import DERIVED_USER_FIELDS, CompleteProfileIn
from medinet.schemas.user import PrivateUserOut, UserOut

logger = logging.getLogger(__name__)

MAX_YEARS_OF_EXPERIENCE = 100
DAYS_PER_YEAR = 365.25

# payload key -> (model, label used in ownership errors)
COLLECTIONS: dict[str, tuple[type, str]] = {
    "experiences": (MedicalExperience, "Experience"),
    "education": (MedicalEducation, "Education"),
    "certifications": (Certification, "Certification"),
    "publications": (Publication, "Publication"),
    "projects": (Project, "Project"),
    "awards": (Award, "Award"),
}

COMPLETION_WEIGHTS = {
    "user": 20,
    "profile": 10,
    "experiences": 15,
    "education": 15,
    "skills": 15,
    "certifications": 10,
    "publications": 5,
    "projects": 5,
    "awards": 5,
}


# -- derivation ------------------------------------------------------------


def derive_current_role(experiences: Iterable[Any]) -> str | None:
    """Title of the most recently started experience flagged current."""
    current = [exp for exp in experiences if exp.is_current]
    if not current:
        return None
    latest = max(current, key=lambda exp: exp.start_date or date.min)
    return latest.title or None


def years_of_experience(experiences: Iterable[Any], today: date | None = None) -> int:
    """Sum of day spans across experiences, in rounded years, capped at 100.

    Current experiences run until today; past ones without an end date are skipped.
    """
    today = today or date.today()
    total_days = 0
    for exp in experiences:
        if exp.start_date is None:
            continue
        if exp.is_current:
            end = today
        elif exp.end_date is not None:
            end = exp.end_date
        else:
            continue
        total_days += max(0, (end - exp.start_date).days)
    return min(round(total_days / DAYS_PER_YEAR), MAX_YEARS_OF_EXPERIENCE)


def _is_medical_school(edu: Any) -> bool:
    degree = (edu.degree_type or "").strip().upper()
    return degree in ("MD", "DO") or "MEDICAL SCHOOL" in degree


def _program_matches(keyword: str):
    def match(edu: Any) -> bool:
        degree = (edu.degree_type or "").strip().lower()
        program = (edu.program_name or "").lower()
        return degree == keyword or keyword in program

    return match


def _completion_year(education: Iterable[Any], predicate) -> int | None:
    years = []
    for edu in education:
        if not predicate(edu):
            continue
        when = edu.graduation_date or edu.end_date
        if when is not None:
            years.append(when.year)
    return max(years) if years else None


def derive_profile_fields(
    experiences: Sequence[Any],
    education: Sequence[Any],
    today: date | None = None,
) -> dict[str, Any]:
    """Compute the derived user fields from stored professional records."""
    return {
        "current_role": derive_current_role(experiences),
        "years_of_experience": years_of_experience(experiences, today),
        "medical_school_graduation_year": _completion_year(education, _is_medical_school),
        "residency_completion_year": _completion_year(education, _program_matches("residency")),
        "fellowship_completion_year": _completion_year(education, _program_matches("fellowship")),
    }


# -- skills ----------------------------------------------------------------


def normalize_skills(items: Iterable[str | dict[str, Any]]) -> list[dict[str, Any]]:
    """Trim, lowercase and dedupe skill inputs (case-insensitively, first wins).

    Returns dicts with either ``id`` or ``name`` plus the optional
    ``category``, ``proficiency_level`` and ``years_of_experience``.
    """
    seen_names: set[str] = set()
    seen_ids: set[int] = set()
    normalized: list[dict[str, Any]] = []
    for item in items:
        if isinstance(item, str):
            item = {"name": item}
        if item.get("id") is not None and not item.get("name"):
            skill_id = int(item["id"])
            if skill_id not in seen_ids:
                seen_ids.add(skill_id)
                normalized.append({"id": skill_id, **_skill_extras(item)})
            continue
        name = str(item.get("name") or "").strip().lower()
        if not name or name in seen_names:
            continue
        seen_names.add(name)
        normalized.append({"name": name, "category": item.get("category"), **_skill_extras(item)})
    return normalized


def _skill_extras(item: dict[str, Any]) -> dict[str, Any]:
    years = item.get("years_of_experience")
    return {
        "proficiency_level": item.get("proficiency_level"),
        "years_of_experience": int(years) if years is not None else None,
    }


class _ProfileOut(BaseModel):
    id: int
    bio: str | None = None
    languages: list[str] = []
    interests: list[str] = []
    causes: list[str] = []
    volunteer_experiences: list[dict[str, Any]] = []

    model_config = ConfigDict(from_attributes=True)


def _row_to_dict(row: Any) -> dict[str, Any]:
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, datetime):
            value = as_utc(value).isoformat()
        elif isinstance(value, date):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        data[column.key] = value
    return data


class ProfileComposer:
    """Reads and writes the composite profile of one user."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _rows(self, model: type, user_id: int) -> list[Any]:
        return list(
            self.db.scalars(select(model).where(model.user_id == user_id).order_by(model.id))
        )

    def _user_skills(self, user_id: int) -> list[tuple[UserSkill, MedicalSkill]]:
        return list(
            self.db.execute(
                select(UserSkill, MedicalSkill)
                .join(MedicalSkill, MedicalSkill.id == UserSkill.skill_id)
                .where(UserSkill.user_id == user_id)
                .order_by(UserSkill.id)
            ).tuples()
        )

    def _has_professional_records(self, user_id: int) -> bool:
        for model in (MedicalExperience, MedicalEducation, UserSkill, Certification):
            if self.db.scalar(select(model.id).where(model.user_id == user_id).limit(1)) is not None:
                return True
        return False

    def completion_percentage(self, user: User) -> int:
        score = 0
        if user.first_name and user.last_name:
            score += COMPLETION_WEIGHTS["user"]
        if self.db.scalar(select(Profile.id).where(Profile.user_id == user.id)) is not None:
            score += COMPLETION_WEIGHTS["profile"]
        if self._user_skills(user.id):
            score += COMPLETION_WEIGHTS["skills"]
        for key, (model, _) in COLLECTIONS.items():
            if self.db.scalar(select(model.id).where(model.user_id == user.id).limit(1)) is not None:
                score += COMPLETION_WEIGHTS[key]
        return score

    # -- reads -------------------------------------------------------------

    def get_complete(self, user: User, *, include_private: bool = False) -> dict[str, Any]:
        user_schema = PrivateUserOut if include_private else UserOut
        profile = self.db.scalars(select(Profile).where(Profile.user_id == user.id)).first()
        professional: dict[str, Any] = {
            key: [_row_to_dict(row) for row in self._rows(model, user.id)]
            for key, (model, _) in COLLECTIONS.items()
        }
        professional["skills"] = [
            {
                "id": skill.id,
                "name": skill.name,
                "category": skill.category,
                "proficiency_level": link.proficiency_level,
                "years_of_experience": link.years_of_experience,
                "endorsements_count": link.endorsements_count,
            }
            for link, skill in self._user_skills(user.id)
        ]
        return {
            "user": user_schema.model_validate(user).model_dump(mode="json"),
            "profile": _ProfileOut.model_validate(profile).model_dump(mode="json") if profile else None,
            "professional": professional,
            "completion_percentage": self.completion_percentage(user),
        }

    # -- writes ------------------------------------------------------------

    def create_complete(self, user: User, payload: CompleteProfileIn) -> dict[str, Any]:
        """Assemble a profile for a user that does not have a substantial one yet."""
        has_identity = bool(user.first_name or user.last_name)
        if has_identity and self._has_professional_records(user.id):
            raise ConflictError(
                "Profile already exists with substantial data. "
                "Use PUT /api/v1/users/me/profile/complete to update your profile."
            )
        skill_items = normalize_skills(payload.skills or [])
        self._check_skill_ids(skill_items)

        try:
            self._apply_user_fields(user, payload)
            profile = self._upsert_profile(user, payload)
            for key, (model, _) in COLLECTIONS.items():
                for item in getattr(payload, key) or []:
                    self.db.add(model(user_id=user.id, **item.model_dump(exclude={"id"})))
            self._replace_skills(user, skill_items)
            self.db.flush()
            self._apply_derived_fields(user)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Composite profile create failed for user %s", user.id)
            raise

        self.db.refresh(user)
        logger.info("Composite profile created for user %s", user.id)
        return {
            "profile_id": profile.id,
            "user_id": user.id,
            "completion_percentage": self.completion_percentage(user),
        }

    def update_complete(self, user: User, payload: CompleteProfileIn) -> dict[str, Any]:
        """Reconcile every supplied collection against the stored one.

        Supplied ids are updated, stored ids missing from the payload are
        deleted and items without an id are created. Ownership of every id is
        verified before anything is written.
        """
        existing = {
            key: {row.id: row for row in self._rows(model, user.id)}
            for key, (model, _) in COLLECTIONS.items()
            if getattr(payload, key) is not None
        }
        for key, rows in existing.items():
            _, label = COLLECTIONS[key]
            for item in getattr(payload, key):
                if item.id is not None and item.id not in rows:
                    raise ForbiddenError(f"{label} with id {item.id} does not belong to you")

        skill_items = normalize_skills(payload.skills) if payload.skills is not None else None
        if skill_items is not None:
            self._check_skill_ids(skill_items)

        try:
            self._apply_user_fields(user, payload)
            self._upsert_profile(user, payload)
            for key, rows in existing.items():
                model, _ = COLLECTIONS[key]
                self._reconcile(user, model, rows, getattr(payload, key))
            if skill_items is not None:
                self._replace_skills(user, skill_items)
            self.db.flush()
            self._apply_derived_fields(user)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Composite profile update failed for user %s", user.id)
            raise

        self.db.refresh(user)
        return self.get_complete(user, include_private=True)

    def _reconcile(self, user: User, model: type, rows: dict[int, Any], items: list[BaseModel]) -> None:
        kept: set[int] = set()
        for item in items:
            values = item.model_dump(exclude={"id"})
            if item.id is not None:
                row = rows[item.id]
                for field, value in values.items():
                    setattr(row, field, value)
                kept.add(item.id)
            else:
                self.db.add(model(user_id=user.id, **values))
        for row_id, row in rows.items():
            if row_id not in kept:
                self.db.delete(row)

    def _apply_user_fields(self, user: User, payload: CompleteProfileIn) -> None:
        if payload.user is None:
            return
        for field, value in payload.user.model_dump(exclude_unset=True).items():
            if field not in DERIVED_USER_FIELDS:
                setattr(user, field, value)

    def _upsert_profile(self, user: User, payload: CompleteProfileIn) -> Profile:
        profile = self.db.scalars(select(Profile).where(Profile.user_id == user.id)).first()
        if profile is None:
            profile = Profile(user_id=user.id)
            self.db.add(profile)
        if payload.profile is not None:
            for field, value in payload.profile.model_dump(exclude_unset=True).items():
                setattr(profile, field, [] if value is None and field != "bio" else value)
        self.db.flush()
        return profile

    def _check_skill_ids(self, skill_items: list[dict[str, Any]]) -> None:
        ids = [item["id"] for item in skill_items if "id" in item]
        if not ids:
            return
        found = set(self.db.scalars(select(MedicalSkill.id).where(MedicalSkill.id.in_(ids))))
        for skill_id in ids:
            if skill_id not in found:
                raise NotFoundError(f"Skill with id {skill_id} not found")

    def _upsert_skill(self, name: str, category: str | None) -> MedicalSkill:
        skill = self.db.scalars(select(MedicalSkill).where(MedicalSkill.name == name)).first()
        if skill is not None:
            return skill
        try:
            with self.db.begin_nested():
                skill = MedicalSkill(name=name, category=category)
                self.db.add(skill)
        except IntegrityError:
            skill = self.db.scalars(select(MedicalSkill).where(MedicalSkill.name == name)).one()
        return skill

    def _replace_skills(self, user: User, skill_items: list[dict[str, Any]]) -> None:
        """Replace the user's skill links wholesale with ``skill_items``."""
        self.db.execute(delete(UserSkill).where(UserSkill.user_id == user.id))
        linked: set[int] = set()
        for item in skill_items:
            if "id" in item:
                skill_id = item["id"]
            else:
                skill_id = self._upsert_skill(item["name"], item.get("category")).id
            if skill_id in linked:
                continue
            linked.add(skill_id)
            self.db.add(
                UserSkill(
                    user_id=user.id,
                    skill_id=skill_id,
                    proficiency_level=item.get("proficiency_level"),
                    years_of_experience=item.get("years_of_experience"),
                )
            )

    def _apply_derived_fields(self, user: User) -> None:
        derived = derive_profile_fields(
            self._rows(MedicalExperience, user.id),
            self._rows(MedicalEducation, user.id),
        )
        for field, value in derived.items():
            setattr(user, field, value)
