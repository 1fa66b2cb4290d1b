"""Viewer-side map state and server session."""
