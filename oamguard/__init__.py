"""SQL policy checks, runtime context, policy hooks, rate limiting and a JSON-over-TCP client."""

__version__ = "0.8.1"

__all__ = [
    "client",
    "policy_engine",
    "quota",
    "rate_limit",
    "runtime_context",
    "schema_mode_policy",
    "session_policy",
]