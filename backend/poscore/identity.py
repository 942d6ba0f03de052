# Overview: Accessors for the acting user, populated per request by require_actor.

from __future__ import annotations

from flask import g


def current_actor_id() -> int | None:
    return getattr(g, "actor_id", None)


def current_actor_role() -> str | None:
    return getattr(g, "actor_role", None)
