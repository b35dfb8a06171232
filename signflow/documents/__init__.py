"""Document generation — everything that reads or writes PDF bytes.

Folder intent:
  codec.py   — PyMuPDF wrapper for fillable forms + image payload decoding
  fields.py  — Field classification, filling and signature placement
  audit.py   — Audit trail PDF for completed workflows

Nothing here touches the database or the network.
"""
