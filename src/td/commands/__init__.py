"""Command implementations for the td CLI."""
