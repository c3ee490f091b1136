"""
igor — GPU driver lifecycle management for Linux hosts.

The engine composes kernel module unloads, package removal, configuration
cleanup and fallback-driver restoration into one cancellable, observable,
rollback-capable workflow.
"""

import logging

__version__ = "0.4.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
