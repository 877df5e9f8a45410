from contextvars import ContextVar

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
_stripe_event_id_ctx: ContextVar[str | None] = ContextVar("stripe_event_id", default=None)


def set_request_id(request_id: str | None) -> object:
    return _request_id_ctx.set(request_id)


def get_request_id() -> str | None:
    return _request_id_ctx.get()


def reset_request_id(token: object) -> None:
    _request_id_ctx.reset(token)


def set_stripe_event_id(event_id: str | None) -> object:
    return _stripe_event_id_ctx.set(event_id)


def get_stripe_event_id() -> str | None:
    return _stripe_event_id_ctx.get()


def reset_stripe_event_id(token: object) -> None:
    _stripe_event_id_ctx.reset(token)
