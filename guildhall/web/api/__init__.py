"""FastAPI application for the dashboard."""
