"""
Prometheus metrics for the blog core.
Exposed by the service app on /metrics.
"""
from prometheus_client import Counter

# Moderation transitions applied to posts (submit, approve, reject, archive, resubmit)
post_transitions_total = Counter(
    "blog_post_transitions_total",
    "Total number of post state transitions applied",
    ["action"],
)

# Moderation transitions applied to comments (approve, reject, takedown, delete)
comment_transitions_total = Counter(
    "blog_comment_transitions_total",
    "Total number of comment state transitions applied",
    ["action"],
)

# Optimistic-concurrency mismatches surfaced as ConflictError
conflicts_total = Counter(
    "blog_version_conflicts_total",
    "Total number of rejected writes due to a stale version",
)

# Storage-level failures (timeout, failure)
storage_errors_total = Counter(
    "blog_storage_errors_total",
    "Total number of storage errors by kind",
    ["kind"],
)


def mark_post_transition(action: str) -> None:
    """Increment the post transition counter for an action."""
    post_transitions_total.labels(action=action).inc()


def mark_comment_transition(action: str) -> None:
    """Increment the comment transition counter for an action."""
    comment_transitions_total.labels(action=action).inc()


def mark_conflict() -> None:
    conflicts_total.inc()


def mark_storage_error(kind: str) -> None:
    """Increment the storage error counter with a specific kind."""
    storage_errors_total.labels(kind=kind).inc()
