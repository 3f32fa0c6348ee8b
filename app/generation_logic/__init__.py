"""Generation logic package.

This package groups the pieces that run a report generation in the background:
the job store, pacing of AI calls, the stage executor, the engagement state
machine, the completion handler, and the launcher. Keeping them here allows
`app/api/routes.py` to stay minimal and focused on HTTP routing.
"""

from .job_store import JobStore  # noqa: F401
from .job_store import job_store  # noqa: F401
from .launcher import PipelineLauncher  # noqa: F401
from .launcher import launcher  # noqa: F401
from .pacing import RateLimitedCaller  # noqa: F401
from .pacing import call_with_delay  # noqa: F401
from .stage_executor import ReportPipeline  # noqa: F401
from .status_query import get_status  # noqa: F401
