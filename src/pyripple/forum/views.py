"""Live forum views.

Each ``*_view`` function opens a derived view through the registry and
returns its handle; the matching pure function does the actual shaping so
it can be reused on a one-off ``read``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Hashable
from typing import Any, TypeVar

from pydantic import ValidationError

from pyripple import paths
from pyripple._constants import LEADERBOARD_SIZE, LEADERBOARD_WINDOW_MS, RECENT_SOLUTIONS_LIMIT
from pyripple.forum.models import (
    Comment,
    CommentsSnapshot,
    InlineComment,
    JoinRequest,
    LeaderboardEntry,
    Notification,
    RecordModel,
    Solution,
    normalize_tags,
)
from pyripple.registry import DEFAULT_SCOPE, SubscriptionRegistry
from pyripple.store.base import LiveStore
from pyripple.view import SwitchViewHandle, ViewHandle, derive, derive_switch

_logger = logging.getLogger(__name__)

R = TypeVar("R", bound=RecordModel)


def _records(raw: Any, model: type[R]) -> list[R]:
    """Parse a keyed collection; the key fills in a missing ``id``."""
    if not isinstance(raw, dict):
        return []
    records: list[R] = []
    for record_id, value in raw.items():
        if not isinstance(value, dict):
            continue
        try:
            records.append(model.model_validate({**value, "id": value.get("id") or record_id}))
        except ValidationError:
            _logger.debug("Skipping malformed %s id=%s", model.__name__, record_id, exc_info=True)
    return records


# ---------------------------------------------------------------------------
# Pure shaping
# ---------------------------------------------------------------------------


def newest_first(raw: Any, limit: int | None = None) -> list[Solution]:
    solutions = sorted(_records(raw, Solution), key=lambda s: s.created_at, reverse=True)
    return solutions if limit is None else solutions[:limit]


def build_comments(raw: Any) -> CommentsSnapshot:
    """Comments oldest first, plus inline comments grouped by code line."""
    comments = sorted(_records(raw, Comment), key=lambda c: c.created_at)
    inline: dict[int, list[InlineComment]] = {}
    for comment in comments:
        if comment.line_number is None:
            continue
        inline.setdefault(comment.line_number, []).append(
            InlineComment(id=comment.id, text=comment.content, author=comment.author)
        )
    return CommentsSnapshot(comments=comments, inline=inline)


def rank_leaderboard(raw: Any, now_ms: int) -> list[LeaderboardEntry]:
    """Sum ``upvotesCount`` per author over the leaderboard window.

    Solutions older than the window are ignored; the top entries are
    returned by descending score, ties broken by name.
    """
    since = now_ms - LEADERBOARD_WINDOW_MS
    scores: dict[str, int] = {}
    names: dict[str, str] = {}
    for solution in _records(raw, Solution):
        if solution.created_at < since or not solution.created_by:
            continue
        uid = solution.created_by
        scores[uid] = scores.get(uid, 0) + solution.upvotes_count
        names.setdefault(uid, solution.author_name)
    entries = [LeaderboardEntry(uid=uid, name=names[uid], score=score) for uid, score in scores.items()]
    entries.sort(key=lambda e: (-e.score, e.name, e.uid))
    return entries[:LEADERBOARD_SIZE]


def join_flagged(flags: Any, solutions: Any) -> list[Solution]:
    """Solutions whose id is flagged in *flags* and still present globally, newest first."""
    marked = {sid for sid, flag in flags.items() if flag} if isinstance(flags, dict) else set()
    return [s for s in newest_first(solutions) if s.id in marked]


def member_uids(raw: Any) -> list[str]:
    if not isinstance(raw, dict):
        return []
    return sorted(uid for uid, member in raw.items() if member)


def pending_first(raw: Any) -> list[Notification]:
    notifications = _records(raw, Notification)
    notifications.sort(key=lambda n: (n.status != "pending", -n.created_at))
    return notifications


def open_join_requests(raw: Any) -> list[JoinRequest]:
    """Pending requests, oldest first."""
    requests = [r for r in _records(raw, JoinRequest) if r.status == "pending"]
    requests.sort(key=lambda r: r.created_at)
    return requests


def question_text(record: Any) -> str | None:
    if not isinstance(record, dict):
        return None
    content = record.get("content")
    return content if isinstance(content, str) and content else None


# ---------------------------------------------------------------------------
# Live views
# ---------------------------------------------------------------------------


def group_solutions_view(
    registry: SubscriptionRegistry,
    group_id: str,
    *,
    scope: Hashable = DEFAULT_SCOPE,
) -> ViewHandle[list[Solution]]:
    return derive(registry, [paths.solutions(group_id)], newest_first, scope=scope, name=f"solutions:{group_id}")


def comments_view(
    registry: SubscriptionRegistry,
    solution_id: str,
    *,
    scope: Hashable = DEFAULT_SCOPE,
) -> ViewHandle[CommentsSnapshot]:
    return derive(registry, [paths.comments(solution_id)], build_comments, scope=scope, name=f"comments:{solution_id}")


def leaderboard_view(
    registry: SubscriptionRegistry,
    now_ms: int,
    *,
    scope: Hashable = DEFAULT_SCOPE,
) -> ViewHandle[list[LeaderboardEntry]]:
    """Leaderboard as of *now_ms*.

    The window is fixed when the view opens; reopen the view (or open a
    new one) to move it forward.
    """

    def _rank(raw: Any) -> list[LeaderboardEntry]:
        return rank_leaderboard(raw, now_ms)

    return derive(registry, [paths.solutions_global()], _rank, scope=scope, name="leaderboard")


def recent_solutions_view(
    registry: SubscriptionRegistry,
    *,
    limit: int = RECENT_SOLUTIONS_LIMIT,
    scope: Hashable = DEFAULT_SCOPE,
) -> ViewHandle[list[Solution]]:
    def _recent(raw: Any) -> list[Solution]:
        return newest_first(raw, limit)

    return derive(registry, [paths.solutions_global()], _recent, scope=scope, name="recent-solutions")


def bookmarked_solutions_view(
    registry: SubscriptionRegistry,
    uid: str,
    *,
    scope: Hashable = DEFAULT_SCOPE,
) -> ViewHandle[list[Solution]]:
    return derive(
        registry,
        [paths.bookmarks(uid), paths.solutions_global()],
        join_flagged,
        scope=scope,
        name=f"bookmarks:{uid}",
    )


def group_members_view(
    registry: SubscriptionRegistry,
    group_id: str,
    *,
    scope: Hashable = DEFAULT_SCOPE,
) -> ViewHandle[list[str]]:
    return derive(registry, [paths.group_members(group_id)], member_uids, scope=scope, name=f"members:{group_id}")


def join_requests_view(
    registry: SubscriptionRegistry,
    group_id: str,
    *,
    scope: Hashable = DEFAULT_SCOPE,
) -> ViewHandle[list[JoinRequest]]:
    return derive(
        registry,
        [paths.group_join_requests(group_id)],
        open_join_requests,
        scope=scope,
        name=f"join-requests:{group_id}",
    )


def todays_question_view(
    registry: SubscriptionRegistry,
    group_id: str,
    *,
    scope: Hashable = DEFAULT_SCOPE,
) -> SwitchViewHandle[str | None]:
    """Text of the group's current question, following ``todaysQuestionId``."""

    def _select(question_id: Any) -> str | None:
        if not isinstance(question_id, str) or not question_id:
            return None
        return paths.group_question(group_id, question_id)

    return derive_switch(
        registry,
        paths.todays_question_id(group_id),
        _select,
        question_text,
        scope=scope,
        name=f"todays-question:{group_id}",
    )


def pending_notifications_view(
    registry: SubscriptionRegistry,
    uid: str,
    *,
    scope: Hashable = DEFAULT_SCOPE,
) -> ViewHandle[list[Notification]]:
    return derive(
        registry,
        [paths.user_notifications(uid)],
        pending_first,
        scope=scope,
        name=f"notifications:{uid}",
    )


def authored_solutions_view(
    registry: SubscriptionRegistry,
    uid: str,
    *,
    scope: Hashable = DEFAULT_SCOPE,
) -> ViewHandle[list[Solution]]:
    """Today's solutions by *uid*, through the author index."""
    return derive(
        registry,
        [paths.author_index(uid), paths.solutions_global()],
        join_flagged,
        scope=scope,
        name=f"authored:{uid}",
    )


# ---------------------------------------------------------------------------
# One-off reads
# ---------------------------------------------------------------------------


async def search_solutions(
    store: LiveStore,
    *,
    language: str | None = None,
    tag: str | None = None,
    author_uid: str | None = None,
) -> list[Solution]:
    """Solutions matching any of the given criteria, newest first.

    Each criterion is looked up in its search index and the ids are
    united; the records come from ``solutions_global``, so only the current
    day's solutions are searchable.
    """
    index_paths: list[str] = []
    if language and language.strip():
        index_paths.append(paths.language_index(language.strip().lower()))
    if tag:
        index_paths.extend(paths.tag_index(t) for t in normalize_tags(tag))
    if author_uid and author_uid.strip():
        index_paths.append(paths.author_index(author_uid.strip()))
    if not index_paths:
        return []

    ids: set[str] = set()
    for index in await asyncio.gather(*(store.read(p) for p in index_paths)):
        if isinstance(index, dict):
            ids.update(sid for sid, flag in index.items() if flag)
    if not ids:
        return []

    ordered = sorted(ids)
    records = await asyncio.gather(*(store.read(paths.global_solution(sid)) for sid in ordered))
    found = {sid: record for sid, record in zip(ordered, records, strict=True) if record is not None}
    _logger.debug("Search matched %d ids, %d still present", len(ids), len(found))
    return newest_first(found)
