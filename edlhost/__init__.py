"""Host-side client for the Qualcomm EDL Sahara protocol."""

__version__ = "0.3.0"

import logging

logger = logging.getLogger(__name__)
