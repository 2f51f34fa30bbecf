"""
Server side of the shared document store: storage, write rules and the store
that applies them.
"""

from .models import RemoteBase, RemoteDocument, create_remote_engine, init_remote_db
from .rule_evaluator import RuleEvaluator, Verdict
from .document_store import RemoteDocumentStore

__all__ = [
    'RemoteBase',
    'RemoteDocument',
    'create_remote_engine',
    'init_remote_db',
    'RuleEvaluator',
    'Verdict',
    'RemoteDocumentStore',
]
