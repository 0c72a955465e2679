"""
Pydantic models for media, dataset records and attribution results.
"""
