"""Background polling of open pull requests."""
