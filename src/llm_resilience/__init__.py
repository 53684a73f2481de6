"""
Resilience layer between an agent's request loop and remote LLM providers.

Absorbs the failures providers produce routinely instead of surfacing them:
- HTTP 429 rate limiting with server-dictated wait hints
- Transient socket/connection resets
- Short provider timeouts unrelated to how long a legitimate wait should be
- Corrupted streaming events

Architecture: fetch-level retry wrapper (httpx) + isolated waits + session-level
error classification and backoff policy.
"""

from llm_resilience.logging_config import configure_logging

__version__ = "0.1.0"

__all__ = ["configure_logging", "__version__"]
