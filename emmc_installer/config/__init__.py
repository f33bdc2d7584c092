"""Installer configuration: fixed paths, labels and the platform descriptor."""
