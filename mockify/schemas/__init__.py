"""Pydantic models for transforms, jobs and API payloads."""
