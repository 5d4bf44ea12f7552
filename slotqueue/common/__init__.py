"""Configuration, logging, metrics and other common code."""
