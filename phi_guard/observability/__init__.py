"""Observability layer: in-memory metrics and error taxonomy. No external SaaS."""
