"""
Integration tests for the power sensor monitoring pipeline.

This package contains integration tests that drive the MQTT transport,
ingestion adapter and monitoring engine together, with a mocked paho
client standing in for the broker.

Test Categories:
- Connection: Subscribe on connect, refused connections, reconnects
- Message flow: Ordered classification, malformed payloads
- Failure isolation: Processing errors counted, subscription kept
"""
