"""Unit tests for core domain logic.

These tests exercise the ordering engine without network access.
The REST API is replaced with FakeReportingApi from tests/fakes/.
"""
