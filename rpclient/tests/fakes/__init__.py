"""Fake/mock implementations of core ports for testing.

These in-memory implementations allow the ordering engine to be tested
without a collector:

- FakeReportingApi: Records calls on a timeline, with delays, gates and failures
- RecordingSink: Captures launch ids emitted at launch finish
"""

from .api import FakeReportingApi
from .sink import RecordingSink

__all__ = [
    "FakeReportingApi",
    "RecordingSink",
]
