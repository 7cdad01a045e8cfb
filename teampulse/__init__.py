"""
TeamPulse Backend Package.

FastAPI service layer for the TeamPulse behavioral drift platform.
Turns per-team daily telemetry into baselines, drift assessments, weekly risk
scores, team health states, measured interventions, and crisis alerts.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, and dependencies
    - models: Pydantic schemas and enums
    - services: Business logic services
    - jobs: Scheduled jobs (weekly diagnosis, experiment sweep, crisis scan)
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
