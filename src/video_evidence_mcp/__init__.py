"""Video evidence sessions: fingerprinting, lifecycle, findings, bookmarks and reports."""
