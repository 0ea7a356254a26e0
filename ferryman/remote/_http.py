"""HTTP plumbing shared by the source and target clients.

Responses are classified into the :mod:`ferryman.errors` taxonomy here, at
the client boundary, so callers never inspect status codes or message text.
"""

from __future__ import annotations

import typing as typ

import httpx
import msgspec

from ferryman.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RemoteRequestError,
    TransientRemoteError,
)

if typ.TYPE_CHECKING:
    from ferryman.errors import RemoteError

_HTTP_ERROR_THRESHOLD = 400
_HTTP_SERVER_ERROR_THRESHOLD = 500
_TOO_MANY_REQUESTS = 429
_CONFLICT = 409
_NOT_FOUND = 404
_DENIED_STATUSES = frozenset({401, 403})
_DETAIL_LIMIT = 200

# Body fragments servers use when a resource already exists, including the
# raw database error some target versions return with a 500.
_DUPLICATE_MARKERS = (
    "already exists",
    "already exist",
    "duplicate key",
    "unique constraint",
    "name has been taken",
)


def _body_text(response: httpx.Response) -> str:
    try:
        return response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""


def classify_response(response: httpx.Response, *, action: str) -> RemoteError:
    """Return the taxonomy error describing a failed ``response``.

    Parameters
    ----------
    response : httpx.Response
        Response with a status of 400 or above.
    action : str
        Human-readable description of the call, used in the message.

    Returns
    -------
    RemoteError
        The error to raise.

    """
    status = response.status_code
    body = _body_text(response)
    lowered = body.lower()

    if any(marker in lowered for marker in _DUPLICATE_MARKERS):
        return ConflictError.already_exists(action, status)
    if status in _DENIED_STATUSES:
        if status == 403 and "rate limit" in lowered:  # noqa: PLR2004
            return TransientRemoteError.http_status(action, status)
        return PermissionDeniedError.for_action(action, status)
    if status == _NOT_FOUND:
        return NotFoundError.for_action(action, status)
    if status == _CONFLICT:
        return ConflictError.already_exists(action, status)
    if status == _TOO_MANY_REQUESTS or status >= _HTTP_SERVER_ERROR_THRESHOLD:
        return TransientRemoteError.http_status(action, status)
    return RemoteRequestError.http_status(action, status, body[:_DETAIL_LIMIT])


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    action: str,
    **kwargs: typ.Any,
) -> httpx.Response:
    """Issue a request and raise a classified error for any failure.

    Raises
    ------
    TransientRemoteError
        On timeouts and transport failures, 429 and 5xx responses.
    RemoteError
        The classified error for any other response of 400 or above.

    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TransportError as exc:
        raise TransientRemoteError.network(action, exc) from exc
    if response.status_code >= _HTTP_ERROR_THRESHOLD:
        raise classify_response(response, action=action)
    return response


def decode[T](response: httpx.Response, type_: type[T], *, action: str) -> T:
    """Decode a JSON response body into ``type_``.

    Raises
    ------
    RemoteRequestError
        If the body does not match the expected shape.

    """
    try:
        return msgspec.json.decode(response.content, type=type_)
    except msgspec.DecodeError as exc:
        raise RemoteRequestError.http_status(
            action, response.status_code, f"unexpected response body: {exc}"
        ) from exc
