"""Core Module Initialization."""
