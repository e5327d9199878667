"""Slack-driven feature request workflow.

This package turns a Slack thread into a guided coding session:
- Repository selection from a configured catalog
- Plan generation and revision by a headless coding agent
- Approval-gated implementation
- Pull request monitoring until merge or close

Open sessions are persisted to PostgreSQL and rehydrated on restart.
"""
