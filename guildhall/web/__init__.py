"""Persistence, billing and the dashboard REST API."""
