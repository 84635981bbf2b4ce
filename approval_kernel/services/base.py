"""
Write side of the kernel.

Services receive the caller's session and stop at ``session.flush()``.
The caller owns commit and rollback, so a step decision, its
compare-and-set and the aggregate recompute land or vanish together.
Query-only helpers belong in ``approval_kernel.selectors``.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Flush-only service bound to one caller-owned session."""

    def __init__(self, session: Session):
        self.session = session
