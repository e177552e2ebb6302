"""Structured results of estimation."""
