"""Messages: repository, conversation tree service and HTTP routes."""
