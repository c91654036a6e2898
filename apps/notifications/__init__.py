"""Notifications app package.

Creates class reminders for teachers and students from message templates
and delivers them over LINE. The `Notification` table doubles as the work
queue: the creator inserts deduplicated rows, the delivery worker claims due
rows, sends them with bounded concurrency and retries failures up to three
attempts before leaving them dead-lettered in FAILED.
"""
