"""Forum mutations.

Counters and flags go through :class:`~pyripple.counter.TransactionalCounter`;
record creation and fan-out writes go through one multi-path ``update`` so
that a record and its indexes appear together.

The upvote toggle is deliberately two-phase: the per-user flag and the
aggregate count are separate transactions.  A crash between them leaves
the count off by one until :func:`reconcile_upvote_count` runs.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any

from pyripple import paths
from pyripple._constants import SERVER_TIMESTAMP
from pyripple.counter import ABORT, TransactionalCounter
from pyripple.forum.models import Notification, Solution, SolutionDraft
from pyripple.store.base import LiveStore

_logger = logging.getLogger(__name__)

_PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


def generate_push_id(now_ms: int | None = None) -> str:
    """Chronologically sortable 20-character key.

    Eight characters encode the timestamp, twelve are random, using the
    same alphabet the hosted store uses for its generated keys.
    """
    ts = _now_ms() if now_ms is None else now_ms
    stamp = []
    for _ in range(8):
        stamp.append(_PUSH_CHARS[ts % 64])
        ts //= 64
    random_part = "".join(secrets.choice(_PUSH_CHARS) for _ in range(12))
    return "".join(reversed(stamp)) + random_part


def _adjust_record_count(added: bool) -> Any:
    def _delta(current: Any) -> Any:
        # The global copy may already have been cleaned up; do not recreate it.
        if not isinstance(current, dict):
            return ABORT
        base = current.get("upvotesCount")
        base = base if isinstance(base, int) and not isinstance(base, bool) else 0
        updated = dict(current)
        updated["upvotesCount"] = base + 1 if added else max(0, base - 1)
        return updated

    return _delta


async def toggle_upvote(
    counter: TransactionalCounter,
    *,
    group_id: str,
    solution_id: str,
    uid: str,
) -> bool:
    """Flip *uid*'s upvote on a solution; returns whether it is now upvoted.

    Phase one toggles the per-user flag, phase two adjusts the group copy's
    ``upvotesCount`` (never below zero) and then the global copy used by
    the leaderboard.  The phases are not atomic.
    """
    added = await counter.toggle(paths.solution_upvote(solution_id, uid))
    count_path = paths.solution_upvotes_count(group_id, solution_id)
    if added:
        await counter.increment(count_path)
    else:
        await counter.decrement_floor(count_path)
    await counter.apply(paths.global_solution(solution_id), _adjust_record_count(added))
    _logger.debug("Upvote toggled solution=%s uid=%s added=%s", solution_id, uid, added)
    return added


async def reconcile_upvote_count(
    store: LiveStore,
    counter: TransactionalCounter,
    *,
    group_id: str,
    solution_id: str,
) -> int:
    """Reset ``upvotesCount`` to the number of upvote flags.

    Heals a count left out of sync by a crash between the two phases of
    :func:`toggle_upvote`.  Returns the reconciled count.
    """
    flags = await store.read(paths.solution_upvotes(solution_id))
    count = sum(1 for flag in (flags or {}).values() if flag) if isinstance(flags, dict) else 0

    def _set_count(current: Any) -> Any:
        return ABORT if current == count or (current is None and count == 0) else count

    await counter.apply(paths.solution_upvotes_count(group_id, solution_id), _set_count)

    def _set_record_count(current: Any) -> Any:
        if not isinstance(current, dict) or current.get("upvotesCount") == count:
            return ABORT
        return {**current, "upvotesCount": count}

    await counter.apply(paths.global_solution(solution_id), _set_record_count)
    _logger.debug("Upvotes reconciled solution=%s count=%d", solution_id, count)
    return count


async def toggle_bookmark(counter: TransactionalCounter, *, uid: str, solution_id: str) -> bool:
    return await counter.toggle(paths.bookmark(uid, solution_id))


async def upvote_comment(counter: TransactionalCounter, *, solution_id: str, comment_id: str) -> int:
    return await counter.increment(paths.comment_upvotes(solution_id, comment_id))


async def submit_solution(
    store: LiveStore,
    counter: TransactionalCounter,
    *,
    group_id: str,
    uid: str,
    author_name: str | None,
    draft: SolutionDraft,
) -> str:
    """Publish a solution with its global copy and search indexes.

    The record, the copy and the indexes land in one multi-path update;
    the author's submission statistics are then incremented.  Returns the
    new solution id.
    """
    solution_id = generate_push_id()
    record = Solution(
        id=solution_id,
        group_id=group_id,
        code=draft.code,
        language=draft.language,
        approach=draft.approach,
        tc=draft.tc,
        sc=draft.sc,
        problem_link=draft.problem_link,
        created_by=uid,
        author_name=author_name or "Anonymous",
        tags=draft.tags,
        todays_question_id=draft.todays_question_id,
    )
    payload = record.to_store()
    payload["createdAt"] = SERVER_TIMESTAMP
    payload["upvotesCount"] = 0

    changes: dict[str, Any] = {
        paths.solution(group_id, solution_id): payload,
        paths.global_solution(solution_id): payload,
        paths.index_by_author(uid, solution_id): True,
        paths.index_by_language(draft.language, solution_id): True,
    }
    for tag in draft.tags:
        changes[paths.index_by_tag(tag, solution_id)] = True
    await store.update(changes)

    await counter.increment(paths.join(paths.user_stats(uid), "submissions"))
    await counter.increment(paths.join(paths.group_stats(group_id, uid), "submissions"))
    _logger.debug("Solution submitted group=%s solution=%s", group_id, solution_id)
    return solution_id


async def add_comment(
    store: LiveStore,
    *,
    solution_id: str,
    uid: str,
    author: str,
    content: str,
    parent_id: str | None = None,
    line_number: int | None = None,
) -> str:
    """Add a (possibly threaded or line-anchored) comment; returns its id."""
    if not content.strip():
        raise ValueError("Comment content must not be empty")
    if line_number is not None and line_number < 1:
        raise ValueError("line_number must be >= 1")
    comment_id = generate_push_id()
    payload: dict[str, Any] = {
        "id": comment_id,
        "author": author,
        "authorUid": uid,
        "content": content,
        "createdAt": SERVER_TIMESTAMP,
        "parentId": parent_id,
        "upvotes": 0,
    }
    if line_number is not None:
        payload["lineNumber"] = line_number
    await store.write(paths.comment(solution_id, comment_id), payload)
    return comment_id


async def create_group(
    store: LiveStore,
    *,
    uid: str,
    name: str,
    description: str = "",
    is_public: bool = False,
) -> str:
    """Create a group with *uid* as admin and first member; returns its id."""
    if not name.strip():
        raise ValueError("Group name must not be empty")
    group_id = generate_push_id()
    await store.update(
        {
            paths.group(group_id): {
                "id": group_id,
                "name": name.strip(),
                "description": description,
                "isPublic": is_public,
                "adminUid": uid,
                "createdAt": SERVER_TIMESTAMP,
                "inviteToken": secrets.token_hex(4),
            },
            paths.join(paths.group_members(group_id), uid): {"role": "admin", "joinedAt": SERVER_TIMESTAMP},
            paths.join(paths.user_groups(uid), group_id): True,
        }
    )
    _logger.debug("Group created group=%s admin=%s", group_id, uid)
    return group_id


async def join_by_code(store: LiveStore, *, uid: str, code: str, now_ms: int | None = None) -> str | None:
    """Join the group whose ``code`` matches; returns its id or ``None``."""
    wanted = code.strip()
    if not wanted:
        return None
    groups = await store.read(paths.groups())
    target = None
    for group_id, group in (groups or {}).items():
        if isinstance(group, dict) and group.get("code") == wanted:
            target = group_id
            break
    if target is None:
        return None
    await store.update(
        {
            paths.join(paths.group_members(target), uid): True,
            paths.join(paths.user_groups(uid), target): {
                "role": "member",
                "joinedAt": _now_ms() if now_ms is None else now_ms,
            },
        }
    )
    return target


async def request_to_join(
    store: LiveStore,
    *,
    group_id: str,
    uid: str,
    admin_uid: str | None = None,
    now_ms: int | None = None,
) -> str:
    """File a join request and, when the admin is known, notify them."""
    ts = _now_ms() if now_ms is None else now_ms
    request_id = f"{uid}-{ts}"
    changes: dict[str, Any] = {
        paths.join(paths.group_join_requests(group_id), request_id): {
            "uid": uid,
            "createdAt": ts,
            "status": "pending",
        },
    }
    if admin_uid:
        changes[paths.user_notification(admin_uid, request_id)] = {
            "type": "join_request",
            "groupId": group_id,
            "fromUid": uid,
            "createdAt": ts,
            "status": "pending",
        }
    await store.update(changes)
    return request_id


async def resolve_join_request(
    store: LiveStore,
    *,
    admin_uid: str,
    notification_id: str,
    notification: Notification,
    approve: bool,
    now_ms: int | None = None,
) -> bool:
    """Approve or deny a pending join request.

    The notification is removed, the request record is marked with the
    outcome and, on approval, membership is granted, all in one multi-path
    update.  Returns ``False`` for anything that is not a pending join
    request.
    """
    if not notification.is_pending_join_request:
        return False
    changes: dict[str, Any] = {
        paths.user_notification(admin_uid, notification_id): None,
        paths.join(paths.group_join_requests(notification.group_id), notification_id, "status"): (
            "approved" if approve else "denied"
        ),
    }
    if approve:
        changes[paths.join(paths.group_members(notification.group_id), notification.from_uid)] = True
        changes[paths.join(paths.user_groups(notification.from_uid), notification.group_id)] = {
            "role": "member",
            "joinedAt": _now_ms() if now_ms is None else now_ms,
        }
    await store.update(changes)
    _logger.debug(
        "Join request %s %s group=%s uid=%s",
        notification_id,
        "approved" if approve else "denied",
        notification.group_id,
        notification.from_uid,
    )
    return True


async def dismiss_notification(store: LiveStore, *, uid: str, notification_id: str) -> None:
    await store.update({paths.user_notification(uid, notification_id): None})


async def set_todays_question(
    store: LiveStore,
    *,
    group_id: str,
    content: str,
    question_id: str | None = None,
    now_ms: int | None = None,
) -> str:
    """Save the question text and point the group at it; returns the question id."""
    qid = question_id or generate_push_id()
    await store.update(
        {
            paths.group_question(group_id, qid): {
                "content": content,
                "updatedAt": _now_ms() if now_ms is None else now_ms,
            },
            paths.todays_question_id(group_id): qid,
        }
    )
    return qid


async def cleanup_ephemeral(store: LiveStore) -> None:
    """Wipe the day's questions, global solutions and search indexes."""
    _logger.info("Ephemeral cleanup started roots=%s", ", ".join(paths.EPHEMERAL_ROOTS))
    await store.update({root: None for root in paths.EPHEMERAL_ROOTS})
    _logger.info("Ephemeral cleanup complete")
