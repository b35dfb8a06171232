"""Notifications package — outbound email and SMS.

Files:
  gateways.py    — NotificationGateway protocol, email relay, Twilio SMS, log-only, channel router
  dispatcher.py  — NotificationDispatcher: records each attempt, never raises to callers
  messages.py    — Fixed plain-text subjects and bodies
"""
