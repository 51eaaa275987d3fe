"""Interfaces for the OOH booking system."""
