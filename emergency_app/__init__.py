"""Lima public-safety emergency feeds (fire dispatch + disaster reports)."""
