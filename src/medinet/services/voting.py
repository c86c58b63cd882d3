"""Reddit-style toggleable voting with denormalized counters.

| Prior    | upvote                         | downvote                       |
|----------|--------------------------------|--------------------------------|
| none     | upvote, upvotes+1              | downvote, downvotes+1          |
| upvote   | none, upvotes-1                | downvote, upvotes-1 downvotes+1|
| downvote | upvote, downvotes-1 upvotes+1  | none, downvotes-1              |

The reaction row write and the counter UPDATE share one serializable
transaction; a conflicting concurrent vote is retried once.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy import case, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from medinet.core.errors import ConflictError, NotFoundError
from medinet.db.retry import is_serialization_failure
from medinet.models import Comment, Post, Reaction, User
from medinet.models.reaction import DOWNVOTE, UPVOTE
from medinet.services.events import VOTE_DOWNVOTE, VOTE_REMOVED, VOTE_UPVOTE, EventBus
from medinet.services.notifications import NotificationService

logger = logging.getLogger(__name__)

ENTITY_POST = "post"
ENTITY_COMMENT = "comment"

T = TypeVar("T")

Votable = Post | Comment


@dataclass
class VoteOutcome:
    """Result of a vote operation."""

    target: Votable
    user_vote: str | None
    changed: bool = True


def clamped(column, delta: int):
    """SQL expression for ``max(column + delta, 0)``."""
    if delta == 0:
        return column
    return case((column + delta < 0, 0), else_=column + delta)


def transition(prior: str | None, action: str) -> tuple[str | None, int, int]:
    """Return ``(new_state, upvote_delta, downvote_delta)`` for a toggle."""
    if action not in (UPVOTE, DOWNVOTE):
        raise ValueError(f"Unsupported vote action: {action}")
    if prior is None:
        return action, int(action == UPVOTE), int(action == DOWNVOTE)
    if prior == action:
        return None, -int(action == UPVOTE), -int(action == DOWNVOTE)
    if action == UPVOTE:
        return UPVOTE, 1, -1
    return DOWNVOTE, -1, 1


class VotingEngine:
    """Applies vote toggles to posts and comments."""

    def __init__(self, db: Session, bus: EventBus) -> None:
        self.db = db
        self.bus = bus

    def _model_for(self, entity_type: str) -> type[Post] | type[Comment]:
        if entity_type == ENTITY_POST:
            return Post
        if entity_type == ENTITY_COMMENT:
            return Comment
        raise ValueError(f"Unsupported entity type: {entity_type}")

    def _get_target(self, entity_type: str, target_id: int) -> Votable:
        target = self.db.get(self._model_for(entity_type), target_id)
        if target is None:
            raise NotFoundError(f"{entity_type.capitalize()} not found")
        return target

    def _reaction_filter(self, entity_type: str, user_id: int, target_id: int):
        query = self.db.query(Reaction).filter(Reaction.user_id == user_id)
        if entity_type == ENTITY_POST:
            return query.filter(Reaction.post_id == target_id, Reaction.comment_id.is_(None))
        return query.filter(Reaction.comment_id == target_id, Reaction.post_id.is_(None))

    def _begin_serializable(self) -> None:
        # SQLite transactions are serializable already.
        if self.db.get_bind().dialect.name != "postgresql":
            return
        if self.db.in_transaction():
            self.db.commit()
        self.db.connection(execution_options={"isolation_level": "SERIALIZABLE"})

    def _run_serializable(self, work: Callable[[], T]) -> T:
        for attempt in (1, 2):
            try:
                self._begin_serializable()
                result = work()
                self.db.commit()
                return result
            except DBAPIError as exc:
                self.db.rollback()
                conflict = isinstance(exc, IntegrityError) or is_serialization_failure(exc)
                if not conflict:
                    raise
                if attempt == 1:
                    logger.info("Vote transaction conflict, retrying once: %s", exc.orig)
                    continue
                raise ConflictError("Concurrent vote conflict, please retry") from exc
        raise AssertionError("unreachable")

    def _apply_counters(self, entity_type: str, target_id: int, d_up: int, d_down: int) -> None:
        model = self._model_for(entity_type)
        upvotes = clamped(model.upvotes, d_up)
        downvotes = clamped(model.downvotes, d_down)
        self.db.execute(
            update(model)
            .where(model.id == target_id)
            .values(upvotes=upvotes, downvotes=downvotes, score=upvotes - downvotes)
            .execution_options(synchronize_session=False)
        )

    def _toggle(self, user: User, entity_type: str, target_id: int, action: str) -> VoteOutcome:
        self._get_target(entity_type, target_id)

        def work() -> str | None:
            reaction = self._reaction_filter(entity_type, user.id, target_id).first()
            prior = reaction.reaction_type if reaction is not None else None
            new_state, d_up, d_down = transition(prior, action)

            if reaction is None:
                self.db.add(
                    Reaction(
                        user_id=user.id,
                        post_id=target_id if entity_type == ENTITY_POST else None,
                        comment_id=target_id if entity_type == ENTITY_COMMENT else None,
                        reaction_type=action,
                    )
                )
            elif new_state is None:
                self.db.delete(reaction)
            else:
                reaction.reaction_type = new_state
            self.db.flush()
            self._apply_counters(entity_type, target_id, d_up, d_down)
            return new_state

        new_state = self._run_serializable(work)
        target = self._get_target(entity_type, target_id)
        self.db.refresh(target)

        event_type = {UPVOTE: VOTE_UPVOTE, DOWNVOTE: VOTE_DOWNVOTE}.get(new_state, VOTE_REMOVED)
        self._publish(event_type, entity_type, target, user.id)
        if new_state == UPVOTE and entity_type == ENTITY_POST and target.user_id != user.id:
            NotificationService(self.db, self.bus).notify(
                user_id=target.user_id,
                notification_type="post_like",
                title=f"{user.full_name or 'Someone'} upvoted your post",
                data={"post_id": target.id, "user_id": user.id},
                related_user_id=user.id,
                related_post_id=target.id,
            )
        return VoteOutcome(target=target, user_vote=new_state)

    def _publish(self, event_type: str, entity_type: str, target: Votable, user_id: int) -> None:
        payload = {"entity_type": entity_type, "entity_id": target.id, "user_id": user_id}
        if entity_type == ENTITY_COMMENT:
            payload["post_id"] = target.post_id
        self.bus.publish(event_type, payload)

    def upvote(self, user: User, entity_type: str, target_id: int) -> VoteOutcome:
        return self._toggle(user, entity_type, target_id, UPVOTE)

    def downvote(self, user: User, entity_type: str, target_id: int) -> VoteOutcome:
        return self._toggle(user, entity_type, target_id, DOWNVOTE)

    def clear(self, user: User, entity_type: str, target_id: int) -> VoteOutcome:
        """Remove the user's vote if any; ``changed`` reports whether a row was removed."""
        self._get_target(entity_type, target_id)

        def work() -> bool:
            reaction = self._reaction_filter(entity_type, user.id, target_id).first()
            if reaction is None:
                return False
            d_up = -1 if reaction.reaction_type == UPVOTE else 0
            d_down = -1 if reaction.reaction_type == DOWNVOTE else 0
            self.db.delete(reaction)
            self.db.flush()
            self._apply_counters(entity_type, target_id, d_up, d_down)
            return True

        removed = self._run_serializable(work)
        target = self._get_target(entity_type, target_id)
        self.db.refresh(target)
        if removed:
            self._publish(VOTE_REMOVED, entity_type, target, user.id)
        return VoteOutcome(target=target, user_vote=None, changed=removed)


def get_user_votes(
    db: Session,
    user_id: int | None,
    entity_type: str,
    target_ids: list[int],
) -> dict[int, str]:
    """Fetch the viewer's votes for many targets in a single query."""
    if user_id is None or not target_ids:
        return {}
    column = Reaction.post_id if entity_type == ENTITY_POST else Reaction.comment_id
    rows = (
        db.query(column, Reaction.reaction_type)
        .filter(Reaction.user_id == user_id, column.in_(target_ids))
        .all()
    )
    return {target_id: reaction_type for target_id, reaction_type in rows}
