"""Logging and Prometheus metrics for kubediag."""
