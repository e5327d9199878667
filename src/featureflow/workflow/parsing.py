"""Parsing of coding agent output.

The coding agent prints free-form progress text and then, on its own
line, a sentinel delimiter followed by the structured result. This module
splits that output and finds pull request links in the result.
"""

import re
from dataclasses import dataclass
from typing import Optional

FINAL_PLAN_DELIMITER = "<<<FINAL_PLAN>>>"
FINAL_SUMMARY_DELIMITER = "<<<FINAL_SUMMARY>>>"

THOUGHTS_NOT_CAPTURED = "No thoughts captured (tag missing)"

# https://<host>/<owner>/<repo>/pull/<number>
PULL_REQUEST_URL_PATTERN = re.compile(
    r"https://[^/\s<>|]+/[^/\s<>|]+/[^/\s<>|]+/pull/\d+"
)


@dataclass(frozen=True)
class AgentOutput:
    """Agent output split at the sentinel delimiter.

    Attributes:
        thoughts: Text before the delimiter, trimmed.
        result: Text after the delimiter, trimmed.
        delimited: False when the delimiter was absent and the whole
            output became the result.
    """

    thoughts: str
    result: str
    delimited: bool


def split_agent_output(output: str, delimiter: str) -> AgentOutput:
    """Split agent output into reasoning and final result.

    The split happens at the last occurrence of the delimiter, so an agent
    that quotes its instructions while reasoning still yields the result it
    printed at the end. When the delimiter is missing the thoughts fall back
    to THOUGHTS_NOT_CAPTURED and the entire output is the result.

    Args:
        output: Combined agent output.
        delimiter: FINAL_PLAN_DELIMITER or FINAL_SUMMARY_DELIMITER.

    Returns:
        AgentOutput with trimmed thoughts and result.

    Example:
        >>> split_agent_output("thinking...\\n<<<FINAL_PLAN>>>\\nDo X", FINAL_PLAN_DELIMITER)
        AgentOutput(thoughts='thinking...', result='Do X', delimited=True)
    """
    before, found, after = output.rpartition(delimiter)
    if not found:
        return AgentOutput(
            thoughts=THOUGHTS_NOT_CAPTURED,
            result=output.strip(),
            delimited=False,
        )
    return AgentOutput(
        thoughts=before.strip(),
        result=after.strip(),
        delimited=True,
    )


def extract_pull_request_url(text: str) -> Optional[str]:
    """Return the first pull request URL in ``text``, if any."""
    match = PULL_REQUEST_URL_PATTERN.search(text)
    return match.group(0) if match else None
