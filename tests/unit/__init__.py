"""
Unit tests for the LLM resilience layer.

Test individual components in isolation:
- Delay calculation (header parsing, jitter, backoff)
- Isolated waits and cancellation tokens
- Fetch-level retry wrapper (scripted transports)
- Error classification
- Session retry policy, state store and runner
- Stream event skipping
"""
