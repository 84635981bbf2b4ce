"""
Read side of the kernel.

A selector borrows the caller's session, runs queries and hands back
frozen DTOs.  It never adds, deletes, flushes or commits, and it never
returns an ORM instance: callers must not be able to write through what
a selector gives them.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Holds the borrowed session; subclasses add the queries."""

    def __init__(self, session: Session):
        self.session = session
