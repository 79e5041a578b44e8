"""Infrastructure: providers, persistence, messaging and services."""
