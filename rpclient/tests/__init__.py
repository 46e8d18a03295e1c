"""Test suite for the reporting client.

Organized into three categories:

1. core/: Unit tests for the ordering engine and its helpers
   - Minimal dependencies, fast execution
   - Uses the in-memory API fake

2. adapters/: Tests for the HTTP transport and output sinks
   - httpx.MockTransport stands in for the collector

3. fakes/: Port implementations for testing
"""
