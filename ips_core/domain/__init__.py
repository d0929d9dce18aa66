"""
Domain Module: tracking session orchestration.
"""

from .acquisition_controller import (
    AcquisitionController,
    AnchorFix,
    SessionState,
)

__all__ = [
    'AcquisitionController',
    'AnchorFix',
    'SessionState',
]
