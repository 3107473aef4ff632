"""Cache key construction.

Keys are JSON arrays so that no combination of cluster, kind, namespace or
name can collide with another (names may contain ``:`` or ``/``).  The
closing bracket is dropped to form prefixes: because every element is a
JSON-escaped scalar, a prefix ending in ``,`` only matches keys whose leading
elements are exactly equal.
"""

from __future__ import annotations

import json

_CLUSTERS = "clusters"
_NAMESPACES = "namespaces"
_REPORTS = "reports"
_REPORT = "report"


def _encode(*parts: str | int) -> str:
    return json.dumps(list(parts), separators=(",", ":"), ensure_ascii=False)


def _prefix(*parts: str | int) -> str:
    return _encode(*parts)[:-1] + ","


def clusters_key() -> str:
    return _encode(_CLUSTERS)


def namespaces_key(cluster: str) -> str:
    return _encode(_NAMESPACES, cluster)


def reports_key(
    cluster: str,
    kind: str,
    namespace: str,
    limit: int,
    continue_token: str = "",
    search: str = "",
) -> str:
    """Key for one page of a report listing.

    *namespace* is ``""`` for cluster-scoped kinds and all-namespace listings.
    """
    return _encode(_REPORTS, cluster, kind, namespace, limit, continue_token, search)


def reports_prefix(cluster: str, kind: str, namespace: str | None = None) -> str:
    """Prefix of every list key for *kind*, optionally narrowed to one namespace."""
    if namespace is None:
        return _prefix(_REPORTS, cluster, kind)
    return _prefix(_REPORTS, cluster, kind, namespace)


def report_details_key(cluster: str, kind: str, namespace: str, name: str) -> str:
    return _encode(_REPORT, cluster, kind, namespace, name)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _decode(key: str) -> list[object] | None:
    try:
        parts = json.loads(key)
    except ValueError:
        return None
    if not isinstance(parts, list) or not parts or not all(isinstance(p, str | int) for p in parts):
        return None
    return parts


def is_report_key(key: str) -> bool:
    """True for report list pages and report details."""
    parts = _decode(key)
    return parts is not None and parts[0] in (_REPORTS, _REPORT)


def cluster_of(key: str) -> str | None:
    """Cluster a namespace, list or details key belongs to; None for global keys."""
    parts = _decode(key)
    if parts is None or len(parts) < 2 or parts[0] not in (_NAMESPACES, _REPORTS, _REPORT):
        return None
    return str(parts[1])


def parse_report_details_key(key: str) -> tuple[str, str, str, str] | None:
    """Inverse of :func:`report_details_key`; None for any other key."""
    parts = _decode(key)
    if parts is None or len(parts) != 5 or parts[0] != _REPORT:
        return None
    cluster, kind, namespace, name = (str(p) for p in parts[1:])
    return cluster, kind, namespace, name
