"""
notification_service
====================

Builds alert events from each tick, suppresses duplicates inside the
throttle window and delivers the rest over SMS and/or e-mail.

Modules
-------
events.py    – portfolio / holding / sentiment / trade events + dedup keys
throttle.py  – magnitude gate, dedup window, send-then-mark dispatch
notifier.py  – Notifier collaborator, Twilio / SendGrid / dry-run transports
"""
