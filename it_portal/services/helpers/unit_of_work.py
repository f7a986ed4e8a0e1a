"""
Explicit transaction boundary for approval operations.

Every decision path runs inside exactly one ``unit_of_work()``:

    with unit_of_work(label="decide", application_id=aid):
        engine.record_decision(...)

On normal exit the session is committed. On any exception the session is
rolled back explicitly and the exception re-raised unchanged, so nothing a
failed call touched (including earlier items of a bulk batch) reaches the
database.

Services inside the block only ``flush()``; they never commit.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from it_portal.core.exceptions import ConcurrentDecision
from it_portal.models import db

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(label: str = "unit_of_work", application_id: str | None = None):
    """Commit on success, roll back on any error.

    A ``StaleDataError`` from the optimistic version check (raised at flush
    or commit) is translated to ``ConcurrentDecision``.
    """
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning(
            "%s rolled back: concurrent modification",
            label,
            extra={"application_id": application_id, "event_type": "rollback"},
        )
        raise ConcurrentDecision(application_id or "?") from exc
    except Exception:
        db.session.rollback()
        logger.info(
            "%s rolled back",
            label,
            extra={"application_id": application_id, "event_type": "rollback"},
        )
        raise
