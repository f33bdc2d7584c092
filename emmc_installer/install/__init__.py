"""Install pipeline stages: check, init, partition, boot copy, root copy."""
