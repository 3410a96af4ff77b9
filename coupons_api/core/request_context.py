from __future__ import annotations

from contextvars import ContextVar


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_ACTOR_CTX: ContextVar[str | None] = ContextVar("actor", default=None)


def set_request_context(*, request_id: str | None = None, actor: str | None = None) -> None:
    if request_id is not None:
        _REQUEST_ID_CTX.set(request_id)
    if actor is not None:
        _ACTOR_CTX.set(actor)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_actor() -> str | None:
    return _ACTOR_CTX.get()


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    _ACTOR_CTX.set(None)
