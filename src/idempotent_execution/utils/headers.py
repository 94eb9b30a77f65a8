"""Header handling for stored and replayed HTTP results.

A stored response must replay the same way it was first served, so headers
that describe the connection or the moment of serving are dropped before
the response is stored. Replays then carry two extra headers telling the
client which key the response belongs to and whether it was replayed.
"""

from collections.abc import Iterable, Mapping

REPLAY_HEADER = "Idempotent-Replay"
KEY_HEADER = "Idempotency-Key"

# Connection-scoped (RFC 9110 section 7.6.1) or tied to the moment of serving
VOLATILE_HEADERS = frozenset(
    {
        "connection",
        "date",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "server",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

_IDEMPOTENCY_HEADERS = frozenset({REPLAY_HEADER.lower(), KEY_HEADER.lower()})


def strip_volatile_headers(
    headers: Mapping[str, str],
    extra: Iterable[str] = (),
) -> dict[str, str]:
    """Copy ``headers`` without volatile ones.

    Args:
        headers: Response headers.
        extra: More header names to drop, matched case-insensitively.

    Example:
        >>> strip_volatile_headers({"Content-Type": "application/json", "Date": "Mon"})
        {'Content-Type': 'application/json'}
    """
    dropped = VOLATILE_HEADERS | {name.lower() for name in extra}
    return {name: value for name, value in headers.items() if name.lower() not in dropped}


def with_replay_headers(
    headers: Mapping[str, str],
    idempotency_key: str,
    is_replay: bool = True,
) -> dict[str, str]:
    """Copy ``headers`` with the replay marker and key set.

    Any existing marker or key header is replaced whatever its case.

    Example:
        >>> with_replay_headers({}, "abc-123")
        {'Idempotent-Replay': 'true', 'Idempotency-Key': 'abc-123'}
    """
    result = {
        name: value
        for name, value in headers.items()
        if name.lower() not in _IDEMPOTENCY_HEADERS
    }
    result[REPLAY_HEADER] = "true" if is_replay else "false"
    result[KEY_HEADER] = idempotency_key
    return result
