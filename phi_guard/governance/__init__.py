"""Governance: audit recording and query, retention scheduling, alerting, administration. No FastAPI."""
