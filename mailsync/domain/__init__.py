"""Domain layer: enums and exceptions shared by every other layer."""
