from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from sqlalchemy import delete, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kinfolk.models import DerivedRelationship
from kinfolk.services.exceptions import ReconcileError
from kinfolk.services.infer import DerivedEdge

logger = logging.getLogger(__name__)

Listener = Callable[[int], Union[None, Awaitable[None]]]


class DerivedSetReconciler:
    """
    Single writer of inferred rows.

    `swap` deletes every stored row with is_inferred=true and bulk-inserts the
    fresh set inside the caller's transaction, so readers see the old set or
    the new one and never a mix. Listeners run only after the caller commits.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def add_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    async def swap(self, db: AsyncSession, derived: Sequence[DerivedEdge]) -> int:
        rows = [
            {
                "person_id": e.person_id,
                "other_id": e.other_id,
                "kind": e.kind,
                "is_inferred": True,
            }
            for e in derived
        ]
        try:
            await db.execute(delete(DerivedRelationship).where(DerivedRelationship.is_inferred.is_(True)))
            if rows:
                await db.execute(insert(DerivedRelationship), rows)
            await db.flush()
        except SQLAlchemyError as e:
            raise ReconcileError(original_error=e) from e
        return len(rows)

    async def reconcile(self, db: AsyncSession, derived: Sequence[DerivedEdge]) -> int:
        """Swap in a transaction of its own, then notify."""
        try:
            async with db.begin():
                n = await self.swap(db, derived)
        except SQLAlchemyError as e:
            # commit itself failed; begin() already rolled back
            raise ReconcileError(original_error=e) from e
        await self.notify(n)
        return n

    async def notify(self, count: int) -> None:
        for cb in list(self._listeners):
            try:
                res: Optional[Any] = cb(count)
                if inspect.isawaitable(res):
                    await res
            except Exception:  # noqa: BLE001
                # the swap is committed; a broken consumer must not undo it
                logger.exception("derived set listener %r failed", cb)
