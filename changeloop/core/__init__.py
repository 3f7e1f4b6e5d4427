"""Core types, configuration and helpers shared by all changeloop services."""
