"""
User interface components for the bill scanner.
"""

from .components import (
    setup_sidebar,
    display_input_tabs,
    display_processing_result,
    display_bill_results,
    reset_session
)

__all__ = [
    'setup_sidebar',
    'display_input_tabs',
    'display_processing_result',
    'display_bill_results',
    'reset_session'
]
