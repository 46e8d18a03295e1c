"""Launch id output sinks (stdout, stderr, environment, file)."""
