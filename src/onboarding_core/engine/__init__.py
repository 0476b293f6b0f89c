"""Task-execution engine: event log, state replay, reasoning loop, executor and recovery."""
