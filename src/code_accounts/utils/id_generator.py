"""Utility functions for generating consistent IDs across the application."""

import shortuuid


def generate_account_id() -> str:
    """Generate a fresh identifier for an explicitly registered account.

    Returns:
        str: Short URL-safe ID (22 characters)
    """
    return shortuuid.uuid()
