"""Prometheus metrics definitions.

Session and access-control metrics for the ToolLink client.
Expose them with prometheus_client's start_http_server or generate_latest.
"""

from __future__ import annotations

from prometheus_client import Counter, generate_latest

logins_total = Counter(
    "toollink_logins_total",
    "Login attempts by outcome",
    ["result"],  # success, rejected, error
)

registrations_total = Counter(
    "toollink_registrations_total",
    "Registration attempts by outcome",
    ["result"],  # success, pending_approval, rejected, error
)

token_refresh_total = Counter(
    "toollink_token_refresh_total",
    "Silent token renewals by outcome",
    ["result"],  # success, failure
)

session_reconciliations_total = Counter(
    "toollink_session_reconciliations_total",
    "Reconciliation passes by outcome",
    ["outcome"],  # unchanged, adopted, cleared, purged
)

stale_results_discarded_total = Counter(
    "toollink_stale_results_discarded_total",
    "Backend results discarded because the session generation moved on",
)

access_decisions_total = Counter(
    "toollink_access_decisions_total",
    "Access gate decisions",
    ["decision"],
)

forced_logouts_total = Counter(
    "toollink_forced_logouts_total",
    "Logouts not requested by the user",
    ["reason"],  # token_refresh_failed, broadcast, invalid_token
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()
