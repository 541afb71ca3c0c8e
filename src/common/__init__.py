"""
Common utilities for workspace-state-sync.

Modules:
- uri: URI value type and path-relative helpers
- marshalling: JSON (de)serialization that revives embedded URIs
- identity: workspace folder identity and URI translation
- cancellation: cancellation tokens for identity resolution
- sync_store: HTTP client for a remote sync store slot
"""

__all__ = [
    "cancellation",
    "identity",
    "marshalling",
    "sync_store",
    "uri",
]
