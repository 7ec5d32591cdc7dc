"""
Common plumbing of the SQL repositories.

- ``handle_db_errors`` maps SQLAlchemy errors to ``StorageError``
- ``BaseRepository`` holds the session and commits mutating calls
"""

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agentflow.infrastructure.agent.errors import StorageError

logger = logging.getLogger(__name__)


def handle_db_errors(entity_type: str = "entity") -> Callable[..., Any]:
    """
    Decorator to convert database errors into storage errors.

    Args:
        entity_type: Name of the entity type for error messages

    Returns:
        Decorated function that rolls the session back and raises StorageError
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(self: "BaseRepository", *args: Any, **kwargs: Any) -> Any:
            try:
                return await func(self, *args, **kwargs)
            except IntegrityError as e:
                await self._session.rollback()
                raise StorageError(
                    f"integrity error while operating on {entity_type}: {e.orig or e}",
                    entity=entity_type,
                    cause=e,
                ) from e
            except SQLAlchemyError as e:
                await self._session.rollback()
                logger.error(f"Database error while operating on {entity_type}: {e}")
                raise StorageError(
                    f"database error while operating on {entity_type}: {e}",
                    entity=entity_type,
                    cause=e,
                ) from e

        return wrapper

    return decorator


class BaseRepository:
    """Session holder shared by the SQL repositories."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _commit(self) -> None:
        await self._session.flush()
        await self._session.commit()
