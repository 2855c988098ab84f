"""CLI module for scribe."""
