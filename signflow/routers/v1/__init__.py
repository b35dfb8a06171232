"""v1 router package — all /api/v1/* endpoints live here.

Files:
  workflows.py   — initiation, snapshots, form-data history, attachments
  recipients.py  — recipient links and step submission
  admin.py       — stats, listing, regeneration, purge

Rule: Routers only handle HTTP (request parsing, response shaping).
      All business logic delegates to signflow/services/.
"""
