"""External process execution.

This module manages command-line tool invocations:
- Subprocess spawning in a working directory
- Concurrent stdout/stderr capture
- Exit code reporting without raising on failure
- Headless coding agent invocation
"""
