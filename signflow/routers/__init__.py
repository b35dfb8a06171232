"""Routers package — HTTP endpoint definitions.

Files:
  deps.py       — shared dependencies (service, gateway, document store)
  documents.py  — public document links (/documents/*) and attachment downloads
  v1/           — Versioned API routes (/api/v1/*)
"""
