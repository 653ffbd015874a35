"""Transaction boundary for resolution operations.

Usage:
    async with unit_of_work(session_factory) as uow:
        result = await operations.resolve_call(uow.session, ...)
        uow.after_commit(notifier, "call.resolved", payload)

Everything inside the block commits together or not at all. Storage errors
surface as TransactionFailure after the rollback; ResolutionError subclasses
propagate unchanged. after_commit callbacks run only once the commit has
succeeded.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from resolution.errors import ResolutionError, TransactionFailure

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self, session: AsyncSession):
        self.session = session
        self._callbacks: list[tuple[Callable[..., Awaitable[Any]], tuple]] = []

    def after_commit(self, callback: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Schedule an async callback to run after a successful commit."""
        self._callbacks.append((callback, args))

    async def run_after_commit(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for callback, args in callbacks:
            try:
                await callback(*args)
            except Exception:
                # The transaction is already committed; a failed notification
                # must not turn it into a reported failure.
                logger.exception("Post-commit callback %r failed", callback)


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[UnitOfWork]:
    async with session_factory() as session:
        uow = UnitOfWork(session)
        try:
            yield uow
            await session.commit()
        except ResolutionError as exc:
            await session.rollback()
            logger.info("Rolled back after %s: %s", exc.code, exc.message)
            raise
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception("Database transaction rolled back")
            raise TransactionFailure(
                "The operation was rolled back; it is safe to retry",
                details={"cause": type(exc).__name__},
            ) from exc
        except Exception:
            await session.rollback()
            logger.exception("Database transaction rolled back due to exception")
            raise
    await uow.run_after_commit()
