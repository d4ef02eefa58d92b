"""Django JSON API for claims and matches."""
