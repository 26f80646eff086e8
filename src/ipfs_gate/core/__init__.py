"""Core configuration for the gate."""
