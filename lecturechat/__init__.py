"""Lecture Chat: turn lecture video libraries into cited, chat-searchable knowledge.

The ``ingestion`` package turns heterogeneous video sources into timestamped,
embedded transcript chunks; the ``chat`` package answers learner questions
grounded in those chunks and keeps the session and cost ledger.
"""

__version__ = "0.1.0"
