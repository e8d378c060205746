"""HTTP adapter for the rotation service."""
