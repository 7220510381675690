"""
Shared Infrastructure
=====================

Cross-cutting infrastructure: structured logging, Grafana OTLP metrics and
the shared-store rate limiter.
"""
