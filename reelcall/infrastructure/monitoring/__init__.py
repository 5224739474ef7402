"""Monitoring: logging setup and the performance/health monitor."""
