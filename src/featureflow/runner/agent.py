"""Coding agent invocation.

The coding agent is a CLI invoked as ``<agent> -y -p <prompt>`` with the
repository checkout as its working directory.
"""

import logging

from src.featureflow.runner.process import ProcessResult, ProcessRunner

logger = logging.getLogger(__name__)


class CodingAgent:
    """Runs prompts through the coding agent CLI.

    Attributes:
        runner: ProcessRunner used to spawn the agent.
        command: Agent executable name or path.
    """

    def __init__(self, runner: ProcessRunner, command: str = "gemini"):
        self.runner = runner
        self.command = command

    async def run(self, prompt: str, cwd: str) -> ProcessResult:
        """Run one prompt in ``cwd`` and return the finished process.

        Raises:
            ProcessDispatchError: If the agent could not be started.
        """
        logger.info(
            "Running coding agent",
            extra={"command": self.command, "cwd": cwd, "prompt_chars": len(prompt)},
        )
        return await self.runner.run(self.command, ["-y", "-p", prompt], cwd=cwd)
