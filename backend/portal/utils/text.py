"""Small text helpers shared by the catalog services."""

import re
import time
import uuid

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """Lower-case `title`, turn runs of non-alphanumerics into one `-` and trim the edges."""
    return _NON_ALNUM.sub("-", (title or "").lower()).strip("-")


def job_slug(title: str) -> str:
    return f"{slugify(title)}-{int(time.time() * 1000)}"


def escape_like(term: str) -> str:
    """Escape SQL LIKE wildcards so a search term matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def new_id() -> str:
    """Identifier for items nested inside JSON columns."""
    return uuid.uuid4().hex[:24]


def with_ids(items: list) -> list:
    """Copy `items`, giving each dict without an `id` a fresh one."""
    return [dict(item, id=item.get("id") or new_id()) for item in items]
