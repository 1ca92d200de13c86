"""
Shared utilities for BMC supervisor components.

- logging_config: consistent logging setup for service and scripts
"""
