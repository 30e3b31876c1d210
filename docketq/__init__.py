"""DocketQ - Daily agenda email digest for legal commitments"""

from __future__ import annotations

__version__ = "1.0.0"
