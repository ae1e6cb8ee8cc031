"""
Celery workers for recipe executions
"""
