from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.settings import settings
from app.services.results import ErrorKind, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")

VERSION_OUTDATED = "version_outdated"


def stale_version(entity: str, key: str, *, expected: int | None = None, current: int | None = None) -> Result:
    details: dict = {"entity": entity, "id": str(key)}
    if expected is not None:
        details["expected_version"] = expected
    if current is not None:
        details["current_version"] = current
    return Result.failure(
        ErrorKind.STALE_VERSION,
        code=VERSION_OUTDATED,
        message=f"{entity} {key} was modified by someone else; reload and try again",
        details=details,
    )


def check_expected_version(entity: str, obj, expected_version: int | None) -> Result | None:
    if expected_version is None or obj.version == expected_version:
        return None
    return stale_version(entity, _key_of(obj), expected=expected_version, current=obj.version)


def _key_of(obj) -> str:
    return str(getattr(obj, "id", "?"))


async def run_with_version_retry(
    db: AsyncSession,
    attempt: Callable[[], Awaitable[Result[T]]],
    *,
    entity: str,
    key: str,
    retries: int | None = None,
    on_exhausted: Callable[[Result], None] | None = None,
) -> Result[T]:
    """Run a read-validate-write attempt and commit it.

    ``attempt`` must load everything it needs from the session on every call;
    nothing decided in a previous attempt is reused. On a version conflict at
    commit the session is rolled back and the attempt runs again, up to
    ``retries`` more times, after which a stale-version failure is returned;
    ``on_exhausted`` may stage an entry for it, which is committed on its own.
    """
    budget = settings.stale_version_retries if retries is None else retries
    for attempt_no in range(budget + 1):
        try:
            result = await attempt()
            await db.commit()
            return result
        except StaleDataError:
            await db.rollback()
            logger.info(
                "Version conflict on %s %s (attempt %s of %s)",
                entity,
                key,
                attempt_no + 1,
                budget + 1,
            )
    result = stale_version(entity, key)
    if on_exhausted is not None:
        on_exhausted(result)
        await db.commit()
    return result
