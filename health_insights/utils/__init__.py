"""Shared helpers for the Health Insights service."""
