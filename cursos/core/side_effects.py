"""Post-commit actions.

Once the authoritative write has been committed, follow-up work (calendar
sync, internal agenda entries, notification fan-out) runs as a list of
independent actions. Each action has its own error boundary: a failure is
logged with the current context and the remaining actions still run.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from cursos.core.logging import get_logger


logger = get_logger(__name__)


@dataclass
class PostCommitAction:
    """A named best-effort action."""

    name: str
    run: Callable[[], Awaitable[Any]]


@dataclass
class PostCommitReport:
    """Outcome of a batch of post-commit actions."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


async def run_post_commit(
    actions: list[PostCommitAction], **log_fields: Any
) -> PostCommitReport:
    """Run each action in order, never raising."""
    report = PostCommitReport()
    for action in actions:
        try:
            await action.run()
            report.succeeded.append(action.name)
        except Exception as e:
            report.failed[action.name] = str(e)
            logger.warning(
                "post_commit_action_failed",
                action=action.name,
                error=str(e),
                error_type=type(e).__name__,
                **log_fields,
            )
    if actions:
        logger.debug(
            "post_commit_actions_completed",
            succeeded=report.succeeded,
            failed=list(report.failed),
            **log_fields,
        )
    return report
