"""
Contact push notification feature package.

Everything needed to notify a customer's device about an agent reply lives
here: domain models, eligibility and token checks, credential caching,
delivery channels, orchestration, the retrying job and its debug routes.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as push_router  # noqa: F401
from .domain.models import DispatchOutcome, Message, OutcomeKind  # noqa: F401
from .jobs.push_job import RetryingJobRunner, enqueue_contact_push  # noqa: F401
from .services.orchestrator import NotificationOrchestrator  # noqa: F401
