"""CLI engine adapters used as agent executors."""
