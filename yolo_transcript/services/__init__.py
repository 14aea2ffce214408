"""Domain services and third-party API clients."""
