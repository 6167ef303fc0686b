"""Activity and meal alerting for family care monitoring.

This package contains the alert engine (activity batching, threshold
evaluation, alert deduplication) and the notification dispatch pipeline,
isolated from the storage and push technologies it talks to.
"""
