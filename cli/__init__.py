"""Command line interface for Flow Scheduler."""
