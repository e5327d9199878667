"""Pull request status queries through the gh CLI.

The gh CLI carries its own authentication, so the service only needs the
executable on PATH:

    gh pr view <url> --json state   ->   {"state": "OPEN"}
"""

import json
import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ValidationError

from src.featureflow.runner.process import ProcessRunner

logger = logging.getLogger(__name__)


class PullRequestState(str, Enum):
    """Pull request states reported by the hosting service."""

    OPEN = "OPEN"
    MERGED = "MERGED"
    CLOSED = "CLOSED"

    @property
    def is_final(self) -> bool:
        return self in (PullRequestState.MERGED, PullRequestState.CLOSED)


class PullRequestView(BaseModel):
    """Subset of ``gh pr view --json`` output the monitor reads."""

    state: PullRequestState


class PullRequestQueryError(Exception):
    """Raised when a pull request status could not be determined.

    Attributes:
        url: The pull request URL that was queried.
        exit_code: gh exit code, when the command ran.
        output: gh output, for diagnostics.
    """

    def __init__(
        self,
        url: str,
        message: str,
        exit_code: Optional[int] = None,
        output: str = "",
    ):
        self.url = url
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"{message} ({url})")


class GitHubCLI:
    """Thin wrapper around the gh executable.

    Attributes:
        runner: ProcessRunner used to spawn gh.
        gh_path: gh executable name or path.
    """

    def __init__(self, runner: ProcessRunner, gh_path: str = "gh"):
        self.runner = runner
        self.gh_path = gh_path

    async def pull_request_state(self, url: str) -> PullRequestState:
        """Return the current state of the pull request at ``url``.

        Raises:
            PullRequestQueryError: On a non-zero gh exit or malformed JSON.
            ProcessDispatchError: If gh could not be started.
        """
        result = await self.runner.run(
            self.gh_path,
            ["pr", "view", url, "--json", "state"],
        )

        if not result.success:
            raise PullRequestQueryError(
                url,
                f"gh pr view exited with code {result.exit_code}",
                exit_code=result.exit_code,
                output=result.stderr,
            )

        try:
            view = PullRequestView.model_validate(json.loads(result.stdout))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise PullRequestQueryError(
                url,
                f"Unexpected gh pr view output: {exc}",
                exit_code=result.exit_code,
                output=result.stdout,
            ) from exc

        logger.info(
            "Pull request state",
            extra={"pr_url": url, "state": view.state.value},
        )
        return view.state
