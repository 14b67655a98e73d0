"""Core building blocks shared by every job: errors, retries, circuit breaking."""
