"""File storage adapters for uploaded images."""
