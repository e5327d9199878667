"""Prompt builders for the coding agent.

Each prompt tells the agent which sentinel to print before its final
answer; parsing.py splits the output on the same constants.
"""

from src.featureflow.workflow.parsing import (
    FINAL_PLAN_DELIMITER,
    FINAL_SUMMARY_DELIMITER,
)


def build_plan_prompt(request_text: str) -> str:
    """Prompt asking for an implementation plan without code changes."""
    return (
        "Create an implementation plan for modifying this codebase to deliver "
        "the feature request below. Start by making sure you have the latest "
        "code from the default branch (main or master): fetch and pull. The "
        "plan must be detailed enough for a coding agent to implement it. "
        "List the files that will be modified, added, or deleted, and the "
        "dependencies of the feature. When your investigation is finished and "
        f"you are ready to present the plan, print the exact string "
        f"{FINAL_PLAN_DELIMITER} on a new line, followed by the plan formatted "
        "in Slack mrkdwn. Do not change any code.\n\n"
        f"Feature request: {request_text}"
    )


def build_revision_prompt(
    request_text: str,
    plan_text: str,
    feedback: str,
) -> str:
    """Prompt asking for a revised plan that addresses user feedback."""
    return (
        "You are an expert software architect. Below are a feature request, "
        "the proposed implementation plan, and the user's feedback on that "
        "plan. Produce an updated implementation plan that incorporates the "
        "feedback.\n\n"
        f"*Feature request:*\n{request_text}\n\n"
        f"*Current implementation plan:*\n{plan_text}\n\n"
        f"*User feedback:*\n{feedback}\n\n"
        "Investigate as needed without changing any code. When ready, print "
        f"the exact string {FINAL_PLAN_DELIMITER} on a new line, followed by "
        "the updated plan in Slack mrkdwn. Do not change any code."
    )


def build_implementation_prompt(plan_text: str) -> str:
    """Prompt asking the agent to implement the plan and open a PR."""
    return f"""Implement the plan below on the codebase in the current directory.

Setup
1. Make sure the working tree is clean and up to date with the default branch (main or master).
2. Check whether you can push to the `origin` remote. If you can, create a feature branch directly. If you cannot, make sure a fork exists (create one with `gh` if needed) and work on a feature branch of the fork.

Implementation
3. Implement the changes described in the plan.
4. Run the project's build and test commands to verify the changes.

Pull request
5. Push the branch.
6. Open a pull request against the original default branch with the `gh` CLI. Always pass non-interactive flags (`--title`, `--body`, `--head`) so the command cannot hang waiting for input.

Wrap-up
7. Once the pull request exists, switch the local checkout back to the default branch so it is ready for the next request.
8. Finally print the exact string {FINAL_SUMMARY_DELIMITER} on a new line, followed by a short summary of the changes and the direct link to the pull request. Print nothing after the summary.

Plan to implement:
{plan_text}"""
