"""Services package — all business logic lives here, never in routers.

Files:
  workflow.py  — sequential routing state machine, attachments, admin operations
  pipeline.py  — completion pipeline (fill + flatten, audit trail, distribution)
  storage.py   — document store for source, generated and uploaded files

Rule: routers call services, services call repositories, repositories call the DB.
      No SQLAlchemy queries in routers. No FastAPI imports in services.
"""
