"""Shared utilities for detection_training."""
