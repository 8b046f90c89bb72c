"""Notifications app package.

E-mail delivery for one-time codes and appointment reminders. Sending
failures are logged and reported as ``False``; they never propagate
into the operation that triggered them.
"""
