"""Scored retrieval and context assembly."""
from .assembler import AssembledContext, ContextAssembler, assemble_from_results
from .semantic_search import EnhancedResult, SemanticSearch

__all__ = [
    'AssembledContext', 'ContextAssembler', 'assemble_from_results',
    'EnhancedResult', 'SemanticSearch'
]
