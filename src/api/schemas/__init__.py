"""Pydantic models for API error responses."""
