"""
Common utility functions shared across MouseScore modules.
"""
import os
import socket
from datetime import datetime

from mousescore import __version__


def get_username() -> str:
    """Get current username for the processing history.

    Returns:
        Username string, or 'unknown' if not determinable.
    """
    try:
        return os.getlogin()
    except OSError:
        return os.environ.get('USERNAME', os.environ.get('USER', 'unknown'))


def history_entry() -> dict:
    """One processing-history record: when, who, where and with which version."""
    return {
        'date': datetime.now().isoformat(),
        'user': get_username(),
        'host': socket.gethostname(),
        'version': f"mousescore {__version__}",
    }
