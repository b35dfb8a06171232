"""Pydantic schemas package.

Folder intent:
  common.py      — CamelModel base, HealthResponse and the error envelope
  workflow.py    — workflow / recipient request DTOs and response models
  attachment.py  — uploaded attachment metadata
"""
