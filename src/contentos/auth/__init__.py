"""Authentication and role/stage authorization."""
