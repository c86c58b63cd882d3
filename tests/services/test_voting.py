# mypy: ignore-errors
"""Tests for the toggleable voting engine."""

import pytest
from sqlalchemy.exc import OperationalError

from medinet.core.errors import ConflictError, NotFoundError
from medinet.models import Notification, Reaction
from medinet.models.reaction import DOWNVOTE, UPVOTE
from medinet.services.events import EventBus
from medinet.services.voting import VotingEngine, get_user_votes, transition


@pytest.mark.parametrize(
    ("prior", "action", "expected"),
    [
        (None, UPVOTE, (UPVOTE, 1, 0)),
        (None, DOWNVOTE, (DOWNVOTE, 0, 1)),
        (UPVOTE, UPVOTE, (None, -1, 0)),
        (UPVOTE, DOWNVOTE, (DOWNVOTE, -1, 1)),
        (DOWNVOTE, UPVOTE, (UPVOTE, 1, -1)),
        (DOWNVOTE, DOWNVOTE, (None, 0, -1)),
    ],
)
def test_transition_table(prior, action, expected) -> None:
    assert transition(prior, action) == expected


def test_transition_rejects_unknown_action() -> None:
    with pytest.raises(ValueError):
        transition(None, "sideways")


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def voting(db_session, bus) -> VotingEngine:
    return VotingEngine(db_session, bus)


def test_upvote_then_toggle_off(voting, test_post, other_user) -> None:
    outcome = voting.upvote(other_user, "post", test_post.id)
    assert outcome.user_vote == UPVOTE
    assert (outcome.target.upvotes, outcome.target.downvotes, outcome.target.score) == (1, 0, 1)

    outcome = voting.upvote(other_user, "post", test_post.id)
    assert outcome.user_vote is None
    assert (outcome.target.upvotes, outcome.target.downvotes, outcome.target.score) == (0, 0, 0)


def test_switching_vote_moves_both_counters(voting, test_post, other_user) -> None:
    voting.upvote(other_user, "post", test_post.id)
    outcome = voting.downvote(other_user, "post", test_post.id)

    assert outcome.user_vote == DOWNVOTE
    assert (outcome.target.upvotes, outcome.target.downvotes, outcome.target.score) == (0, 1, -1)


def test_score_tracks_many_voters(voting, make_user, test_post) -> None:
    voters = [make_user(f"Voter{i}", "Md") for i in range(3)]
    voting.upvote(voters[0], "post", test_post.id)
    voting.upvote(voters[1], "post", test_post.id)
    outcome = voting.downvote(voters[2], "post", test_post.id)

    assert (outcome.target.upvotes, outcome.target.downvotes, outcome.target.score) == (2, 1, 1)


def test_one_reaction_row_per_user_and_target(voting, db_session, test_post, other_user) -> None:
    voting.upvote(other_user, "post", test_post.id)
    voting.downvote(other_user, "post", test_post.id)

    rows = db_session.query(Reaction).filter(Reaction.user_id == other_user.id).all()
    assert len(rows) == 1
    assert rows[0].reaction_type == DOWNVOTE


def test_counters_never_go_negative(voting, db_session, test_post, other_user) -> None:
    # A vote row whose counter increment was lost.
    db_session.add(Reaction(user_id=other_user.id, post_id=test_post.id, reaction_type=UPVOTE))
    db_session.commit()

    outcome = voting.clear(other_user, "post", test_post.id)

    assert outcome.changed is True
    assert outcome.target.upvotes == 0
    assert outcome.target.score == 0


def test_clear_without_vote_is_a_no_op(voting, bus, test_post, other_user) -> None:
    events = []
    bus.subscribe("*", events.append)

    outcome = voting.clear(other_user, "post", test_post.id)

    assert outcome.changed is False
    assert outcome.user_vote is None
    assert events == []


def test_comment_votes_carry_the_post_id(voting, bus, test_post, make_comment, test_user, other_user) -> None:
    comment = make_comment(test_post, test_user)
    events = []
    bus.subscribe("vote:upvote", events.append)

    outcome = voting.upvote(other_user, "comment", comment.id)

    assert outcome.target.upvotes == 1
    assert events[0].data == {
        "entity_type": "comment",
        "entity_id": comment.id,
        "user_id": other_user.id,
        "post_id": test_post.id,
    }


def test_upvoting_someone_elses_post_notifies_the_author(voting, db_session, test_post, test_user, other_user) -> None:
    voting.upvote(other_user, "post", test_post.id)

    notification = db_session.query(Notification).filter(Notification.user_id == test_user.id).one()
    assert notification.notification_type == "post_like"
    assert notification.related_user_id == other_user.id


def test_self_upvote_does_not_notify(voting, db_session, test_post, test_user) -> None:
    voting.upvote(test_user, "post", test_post.id)
    assert db_session.query(Notification).count() == 0


def test_missing_target_raises_not_found(voting, other_user) -> None:
    with pytest.raises(NotFoundError):
        voting.upvote(other_user, "post", 999_999)


def test_get_user_votes_batches_lookups(voting, db_session, make_post, test_user, other_user) -> None:
    first = make_post(test_user, "one")
    second = make_post(test_user, "two")
    voting.upvote(other_user, "post", first.id)
    voting.downvote(other_user, "post", second.id)

    votes = get_user_votes(db_session, other_user.id, "post", [first.id, second.id])

    assert votes == {first.id: UPVOTE, second.id: DOWNVOTE}
    assert get_user_votes(db_session, None, "post", [first.id]) == {}


def _serialization_failure() -> OperationalError:
    return OperationalError("UPDATE posts", {}, Exception("could not serialize access due to concurrent update"))


def test_serialization_conflict_is_retried_once(voting, db_session, mocker, test_post, other_user) -> None:
    apply_counters = voting._apply_counters
    calls = []

    def flaky(*args):
        calls.append(args)
        if len(calls) == 1:
            raise _serialization_failure()
        return apply_counters(*args)

    mocker.patch.object(voting, "_apply_counters", side_effect=flaky)

    outcome = voting.upvote(other_user, "post", test_post.id)

    assert len(calls) == 2
    assert outcome.user_vote == UPVOTE
    assert outcome.target.upvotes == 1
    assert db_session.query(Reaction).filter(Reaction.user_id == other_user.id).count() == 1


def test_repeated_serialization_conflict_becomes_conflict_error(voting, db_session, mocker, test_post, other_user) -> None:
    events = []
    voting.bus.subscribe("*", events.append)
    mocker.patch.object(voting, "_apply_counters", side_effect=_serialization_failure())

    with pytest.raises(ConflictError) as exc_info:
        voting.upvote(other_user, "post", test_post.id)

    assert exc_info.value.status_code == 409
    assert exc_info.value.message == "Concurrent vote conflict, please retry"
    assert voting._apply_counters.call_count == 2
    assert db_session.query(Reaction).count() == 0
    assert events == []


def test_non_conflict_database_errors_are_not_retried(voting, mocker, test_post, other_user) -> None:
    error = OperationalError("UPDATE posts", {}, Exception("disk I/O error"))
    mocker.patch.object(voting, "_apply_counters", side_effect=error)

    with pytest.raises(OperationalError):
        voting.upvote(other_user, "post", test_post.id)

    assert voting._apply_counters.call_count == 1
