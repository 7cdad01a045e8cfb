"""
TeamPulse test suite.

Run with:
    pytest teampulse/tests

All database access is mocked through the fixtures in conftest.py; no test
needs a running PostgreSQL instance or Slack workspace.
"""
