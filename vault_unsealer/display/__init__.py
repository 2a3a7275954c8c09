"""Console and log output."""
