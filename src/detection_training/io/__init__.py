"""Checkpoint persistence."""
