"""
API schemas package.

Contains Pydantic models for request/response validation.
"""
