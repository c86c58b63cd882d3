# mypy: ignore-errors
"""Tests for profile derivation and the composite profile writer."""

from datetime import date
from types import SimpleNamespace

import pytest

from medinet.core.errors import ConflictError, ForbiddenError, NotFoundError
from medinet.models import MedicalExperience, MedicalSkill, UserSkill
from medinet.schemas.profile import CompleteProfileIn
from medinet.services.profile import (
    ProfileComposer,
    derive_current_role,
    derive_profile_fields,
    normalize_skills,
    years_of_experience,
)

TODAY = date(2024, 6, 1)


def exp(title, start, end=None, current=False):
    return SimpleNamespace(title=title, start_date=start, end_date=end, is_current=current)


def edu(degree, when, program=None):
    return SimpleNamespace(degree_type=degree, program_name=program, graduation_date=when, end_date=None)


def test_current_role_is_the_latest_current_position() -> None:
    experiences = [
        exp("Resident", date(2015, 7, 1), date(2018, 6, 30)),
        exp("Attending", date(2018, 7, 1), current=True),
        exp("Clinic Director", date(2021, 1, 1), current=True),
    ]
    assert derive_current_role(experiences) == "Clinic Director"
    assert derive_current_role([exp("Resident", date(2015, 7, 1), date(2018, 6, 30))]) is None


def test_years_of_experience_sums_spans_and_skips_open_past_roles() -> None:
    experiences = [
        exp("Resident", date(2014, 6, 1), date(2017, 6, 1)),
        exp("Attending", date(2020, 6, 1), current=True),
        exp("Locum", date(2018, 1, 1)),
    ]
    assert years_of_experience(experiences, TODAY) == 7


def test_years_of_experience_is_capped() -> None:
    assert years_of_experience([exp("Ancient", date(1800, 1, 1), current=True)], TODAY) == 100


def test_derived_training_years_take_the_latest_match() -> None:
    education = [
        edu("MD", date(2010, 5, 20)),
        edu("Certificate", date(2014, 6, 30), program="Internal Medicine Residency"),
        edu("Residency", date(2016, 6, 30)),
        edu("Certificate", date(2018, 6, 30), program="Cardiology Fellowship"),
    ]
    derived = derive_profile_fields([], education, TODAY)
    assert derived == {
        "current_role": None,
        "years_of_experience": 0,
        "medical_school_graduation_year": 2010,
        "residency_completion_year": 2016,
        "fellowship_completion_year": 2018,
    }


def test_normalize_skills_trims_lowercases_and_dedupes() -> None:
    normalized = normalize_skills(
        [" Cardiology ", "cardiology", {"name": "ECHO", "category": "Imaging"}, {"id": 4}, {"id": 4}, "  "]
    )
    assert [item.get("name", item.get("id")) for item in normalized] == ["cardiology", "echo", 4]
    assert normalized[1]["category"] == "Imaging"


@pytest.fixture
def composer(db_session) -> ProfileComposer:
    return ProfileComposer(db_session)


def _payload(**data) -> CompleteProfileIn:
    return CompleteProfileIn.model_validate(data)


def test_create_complete_writes_every_collection(composer, db_session, test_user) -> None:
    payload = _payload(
        user={"headline": "Cardiologist", "current_role": "ignored"},
        profile={"bio": "Heart doctor", "languages": ["en", "es"]},
        experiences=[{"title": "Attending", "start_date": "2018-07-01", "is_current": True}],
        education=[{"degree_type": "MD", "institution_name": "State Medical", "graduation_date": "2012-05-20"}],
        skills=["Echocardiography", {"name": "echocardiography"}, {"name": "Cath Lab", "category": "Procedures"}],
        awards=[{"title": "Teacher of the Year", "year": 2022}],
    )

    result = composer.create_complete(test_user, payload)

    db_session.refresh(test_user)
    assert result["user_id"] == test_user.id
    assert test_user.headline == "Cardiologist"
    assert test_user.current_role == "Attending"
    assert test_user.medical_school_graduation_year == 2012
    assert db_session.query(UserSkill).filter(UserSkill.user_id == test_user.id).count() == 2

    complete = composer.get_complete(test_user)
    assert complete["profile"]["languages"] == ["en", "es"]
    assert [s["name"] for s in complete["professional"]["skills"]] == ["echocardiography", "cath lab"]
    assert complete["completion_percentage"] == 20 + 10 + 15 + 15 + 15 + 5


def test_create_complete_refuses_an_established_profile(composer, db_session, test_user) -> None:
    db_session.add(MedicalExperience(user_id=test_user.id, title="Resident", start_date=date(2019, 7, 1)))
    db_session.commit()

    with pytest.raises(ConflictError):
        composer.create_complete(test_user, _payload(profile={"bio": "again"}))


def test_update_reconciles_collections(composer, db_session, test_user) -> None:
    composer.create_complete(
        test_user,
        _payload(
            experiences=[
                {"title": "Resident", "start_date": "2015-07-01", "end_date": "2018-06-30"},
                {"title": "Fellow", "start_date": "2018-07-01", "end_date": "2020-06-30"},
            ]
        ),
    )
    stored = composer.get_complete(test_user)["professional"]["experiences"]
    resident = next(row for row in stored if row["title"] == "Resident")

    updated = composer.update_complete(
        test_user,
        _payload(
            experiences=[
                {"id": resident["id"], "title": "Chief Resident", "start_date": "2015-07-01", "end_date": "2018-06-30"},
                {"title": "Attending", "start_date": "2020-07-01", "is_current": True},
            ]
        ),
    )

    titles = sorted(row["title"] for row in updated["professional"]["experiences"])
    assert titles == ["Attending", "Chief Resident"]
    assert updated["user"]["current_role"] == "Attending"


def test_update_rejects_foreign_record_ids(composer, db_session, test_user, other_user) -> None:
    theirs = MedicalExperience(user_id=other_user.id, title="Surgeon", start_date=date(2010, 1, 1))
    db_session.add(theirs)
    db_session.commit()

    with pytest.raises(ForbiddenError) as exc_info:
        composer.update_complete(
            test_user,
            _payload(experiences=[{"id": theirs.id, "title": "Mine now", "start_date": "2010-01-01"}]),
        )
    assert "does not belong to you" in exc_info.value.message
    db_session.refresh(theirs)
    assert theirs.title == "Surgeon"


def test_update_replaces_skills_wholesale(composer, db_session, test_user) -> None:
    composer.create_complete(test_user, _payload(skills=["triage", "suturing"]))
    composer.update_complete(test_user, _payload(skills=["Suturing", "ultrasound"]))

    names = [s["name"] for s in composer.get_complete(test_user)["professional"]["skills"]]
    assert names == ["suturing", "ultrasound"]
    assert db_session.query(MedicalSkill).count() == 3


def test_unknown_skill_id_is_rejected(composer, test_user) -> None:
    with pytest.raises(NotFoundError):
        composer.update_complete(test_user, _payload(skills=[{"id": 424242}]))


def test_omitted_collections_are_untouched(composer, test_user) -> None:
    composer.create_complete(test_user, _payload(awards=[{"title": "Best Bedside Manner"}]))
    updated = composer.update_complete(test_user, _payload(user={"location": "Boston"}))

    assert [a["title"] for a in updated["professional"]["awards"]] == ["Best Bedside Manner"]
    assert updated["user"]["location"] == "Boston"
