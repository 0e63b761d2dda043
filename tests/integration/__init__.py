# tests/integration/__init__.py
"""
Integration tests for campus-sync.

Multi-device sync scenarios sharing one mocked remote, and the HTTP API
driven through FastAPI's TestClient.
"""
