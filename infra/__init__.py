"""Infrastructure helpers for Mixboot: logging, configuration, parallelism."""
