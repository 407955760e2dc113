"""
Contract tests for the Power Sensor Monitor HTTP and WebSocket API.

These tests drive the FastAPI application in-process through
``TestClient`` against a monitoring engine fed with synthetic payloads.

Test Categories:
- Status endpoint: Pipeline statistics and broker connection health
- Readings endpoints: History window and latest reading
- Alerts endpoints: Alert log listing and dismissal by position
- Configuration endpoint: Active configuration with secrets masked
- Export endpoint: CSV download with range and column filters
- WebSocket: Initial snapshot and streamed reading/alert updates

Usage:
    pytest tests/contract/ -m contract
    pytest tests/contract/test_export_endpoint.py::test_export_columns_and_range
"""
