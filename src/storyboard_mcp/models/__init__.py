"""Pydantic models for shot requests, results and run state."""
