"""Command line tools for RMFWatch."""
