"""Bot services shared with the API."""
