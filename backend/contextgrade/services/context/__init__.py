"""
Context Gathering Services

Signal collection for subject entities. The engine consumes only
ContextGatherer.gather() and treats its result as opaque.
"""

from .gatherer import (
    ContextGatherer,
    EntityProfile,
    SignalBundle,
    empty_signal_bundle,
    extract_decision_facts,
)

__all__ = [
    'ContextGatherer',
    'EntityProfile',
    'SignalBundle',
    'empty_signal_bundle',
    'extract_decision_facts',
]
