"""Block device, partition, filesystem and mount operations."""
