"""
Integration tests for the LLM resilience layer.

Exercise the retry layer through a real httpx.AsyncClient backed by
httpx.MockTransport, so no network access is required.
"""
