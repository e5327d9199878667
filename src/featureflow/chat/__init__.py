"""Slack integration.

This module handles both directions of the conversation:
- Events API request verification and parsing
- Thread replies and user lookups over the Web API
"""
