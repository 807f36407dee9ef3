"""Relational storage adapters (SQLAlchemy).

Repositories let SQLAlchemy faults (IntegrityError, NoResultFound, DataError)
propagate unchanged; the exception handlers map them to client responses.
"""
