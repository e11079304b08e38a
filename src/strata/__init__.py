"""strata — layered profile store with change notifications."""
