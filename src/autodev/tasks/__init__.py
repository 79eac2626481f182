"""Task and plan models, plan construction and validation."""
