"""Cache layer for trivy-ui.

Sits between the Kubernetes API and the read path.  Entries expire on a TTL
and are also dropped early by the report watchers when the underlying
objects change.

Submodules:
    keys          -- Injective cache key construction and invalidation prefixes.
    report_cache  -- TTL byte store with atomic disk snapshots and a periodic persister.
"""

from trivyui.cache.report_cache import DEFAULT, NEVER_EXPIRE, ReportCache

__all__ = ["DEFAULT", "NEVER_EXPIRE", "ReportCache"]
