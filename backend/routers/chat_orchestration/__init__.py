"""
MetaDJai Chat Orchestration - chat turn handling.

Components:
- ChatOrchestrator: cache lookup, provider selection, tool loop, failover
- TurnResult: accumulated output of one provider attempt
"""

from .orchestrator import ChatOrchestrator, TurnResult, is_timeout_error, validate_web_search_citations

__all__ = [
    "ChatOrchestrator",
    "TurnResult",
    "is_timeout_error",
    "validate_web_search_citations",
]
