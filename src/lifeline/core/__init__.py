"""Core subsystems: signals, checkpoint pipeline, store, retention, config."""
