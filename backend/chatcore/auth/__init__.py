"""Authentication: JWT tokens, password hashing, signup and login."""
