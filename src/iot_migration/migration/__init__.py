"""Migration engine: checkpointing, worker pool and phase drivers."""
