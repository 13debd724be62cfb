"""Task model, configuration, lifecycle controller and agent sessions."""
