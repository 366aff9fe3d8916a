"""
Job runners for the contact push feature.
"""

from .push_job import RetryingJobRunner, enqueue_contact_push, start_contact_push_worker

__all__ = ["RetryingJobRunner", "enqueue_contact_push", "start_contact_push_worker"]
