"""Scheduling app package.

Minimal school directory consumed by the reminder pipeline: branches,
teachers, students, subjects, booths and the dated class sessions that bind
them together. Teachers and students carry the LINE identity linked through
the webhook flow and their notification opt-in flag.
"""
