"""Foreground app usage timeline projection and daily statistics."""
