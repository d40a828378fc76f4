"""Common infrastructure shared across the relay: logging and errors."""
