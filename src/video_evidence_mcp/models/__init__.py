"""Pydantic models for sessions, turns, bookmarks and reports."""
