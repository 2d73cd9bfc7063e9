"""Hierarchical store paths.

A path is a ``/``-separated string naming a location in the remote tree
(``"groups/g1/name"``).  The empty string is the root.  Helpers here never
touch the store; they only normalise and compose path strings.

The second half of the module is the forum schema: one builder per record
location used by :mod:`pyripple.forum`.
"""

from __future__ import annotations

from pyripple._constants import FORBIDDEN_KEY_CHARS

ROOT = ""


def _check_segment(segment: str) -> str:
    if any(ch in FORBIDDEN_KEY_CHARS for ch in segment):
        raise ValueError(f"Invalid path segment {segment!r}: keys may not contain . # $ [ ]")
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in segment):
        raise ValueError(f"Invalid path segment {segment!r}: control characters are not allowed")
    return segment


def split(path: str) -> list[str]:
    """Split *path* into validated, non-empty segments."""
    return [_check_segment(part) for part in path.split("/") if part]


def normalize(path: str) -> str:
    """Return the canonical form of *path* (no leading/trailing/double slashes)."""
    return "/".join(split(path))


def join(*parts: str) -> str:
    """Join path fragments; each fragment may itself contain slashes."""
    segments: list[str] = []
    for part in parts:
        segments.extend(split(str(part)))
    return "/".join(segments)


def parent(path: str) -> str | None:
    """Parent of *path*, or ``None`` for the root."""
    segments = split(path)
    if not segments:
        return None
    return "/".join(segments[:-1])


def key(path: str) -> str | None:
    """Last segment of *path*, or ``None`` for the root."""
    segments = split(path)
    return segments[-1] if segments else None


def ancestors(path: str) -> list[str]:
    """Proper ancestors of *path*, root first."""
    segments = split(path)
    return ["/".join(segments[:i]) for i in range(len(segments))]


def is_ancestor(ancestor: str, path: str) -> bool:
    """Whether *ancestor* is *path* itself or lies above it."""
    a = split(ancestor)
    p = split(path)
    return p[: len(a)] == a


def relative(ancestor: str, path: str) -> list[str]:
    """Segments of *path* below *ancestor*.

    Raises
    ------
    ValueError
        If *ancestor* is not an ancestor of *path*.
    """
    a = split(ancestor)
    p = split(path)
    if p[: len(a)] != a:
        raise ValueError(f"{ancestor!r} is not an ancestor of {path!r}")
    return p[len(a) :]


# ---------------------------------------------------------------------------
# Forum schema
# ---------------------------------------------------------------------------


def user_notifications(uid: str) -> str:
    return join("userNotifications", uid)


def user_notification(uid: str, notification_id: str) -> str:
    return join("userNotifications", uid, notification_id)


def user_groups(uid: str) -> str:
    return join("userGroups", uid)


def user_stats(uid: str) -> str:
    return join("userStats", uid)


def groups() -> str:
    return "groups"


def group(group_id: str) -> str:
    return join("groups", group_id)


def todays_question_id(group_id: str) -> str:
    return join("groups", group_id, "todaysQuestionId")


def group_members(group_id: str) -> str:
    return join("groupMembers", group_id)


def group_join_requests(group_id: str) -> str:
    return join("groupJoinRequests", group_id)


def group_stats(group_id: str, uid: str | None = None) -> str:
    if uid is None:
        return join("groupStats", group_id)
    return join("groupStats", group_id, uid)


def group_question(group_id: str, question_id: str) -> str:
    return join("groupQuestions", group_id, question_id)


def solutions(group_id: str) -> str:
    return join("solutions", group_id)


def solution(group_id: str, solution_id: str) -> str:
    return join("solutions", group_id, solution_id)


def solution_upvotes_count(group_id: str, solution_id: str) -> str:
    return join("solutions", group_id, solution_id, "upvotesCount")


def solutions_global() -> str:
    return "solutions_global"


def global_solution(solution_id: str) -> str:
    return join("solutions_global", solution_id)


def solution_upvotes(solution_id: str) -> str:
    return join("upvotes", "solutions", solution_id)


def solution_upvote(solution_id: str, uid: str) -> str:
    return join("upvotes", "solutions", solution_id, uid)


def bookmarks(uid: str) -> str:
    return join("bookmarks", uid)


def bookmark(uid: str, solution_id: str) -> str:
    return join("bookmarks", uid, solution_id)


def comments(solution_id: str) -> str:
    return join("comments", solution_id)


def comment(solution_id: str, comment_id: str) -> str:
    return join("comments", solution_id, comment_id)


def comment_upvotes(solution_id: str, comment_id: str) -> str:
    return join("comments", solution_id, comment_id, "upvotes")


def index_by_author(uid: str, solution_id: str) -> str:
    return join("indexByAuthor", uid, solution_id)


def index_by_language(language: str, solution_id: str) -> str:
    return join("indexByLanguage", language, solution_id)


def index_by_tag(tag: str, solution_id: str) -> str:
    return join("indexByTag", tag, solution_id)


def author_index(uid: str) -> str:
    return join("indexByAuthor", uid)


def language_index(language: str) -> str:
    return join("indexByLanguage", language)


def tag_index(tag: str) -> str:
    return join("indexByTag", tag)


#: Roots wiped by the daily ephemeral cleanup job.
EPHEMERAL_ROOTS: tuple[str, ...] = (
    "ephemeralSubmissions",
    "groupQuestions",
    "indexByAuthor",
    "indexByLanguage",
    "indexByTag",
    "solutions_global",
)
