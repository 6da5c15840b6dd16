"""HTTP surface for the agent runtime."""
