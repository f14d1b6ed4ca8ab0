"""Value types for installation metadata and its history."""
