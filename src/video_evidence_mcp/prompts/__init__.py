"""Prompt templates for evidence analysis."""
