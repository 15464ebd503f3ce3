"""API routers for the Health Insights service."""
