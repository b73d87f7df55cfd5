"""HTTP surface for the backup subsystem."""
