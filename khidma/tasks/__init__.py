"""Celery tasks. Service modules are imported inside task bodies."""
