"""Service layer for the Health Insights pipeline."""
