"""Notification channel adapters.

Email goes through Django's mail framework (EMAIL_BACKEND); SMS goes
through the backend named by settings.SMS_BACKEND. Every channel's
send() returns a dict with keys message_id, status ("sent" or "failed")
and optionally error.
"""
