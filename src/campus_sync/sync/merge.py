# src/campus_sync/sync/merge.py
"""
Remote Merge Fetcher - pull the whole remote collection and fold it locally.

Last-writer-wins on max(updated_at, created_at), keyed by uuid:
- Remote row soft-deleted  -> soft-delete locally (if live), mark synced
- Unknown uuid             -> insert locally as already synced
- Remote strictly newer    -> overwrite local business fields, mark synced
- Otherwise                -> leave local untouched

Absence never deletes: a local row missing remotely is left alone.
"""

import logging
import sqlite3
from typing import Dict

from ..core.models import MergeReport
from ..core.ports.remote import RemoteStorePort
from ..core.schema import get_schema
from ..db import LocalStore
from ..repositories.entity_repository import EntityRepository

logger = logging.getLogger(__name__)


class RemoteMergeFetcher:
    """Pull-side of the sync engine, one entity kind at a time."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStorePort,
        repositories: Dict[str, EntityRepository],
    ):
        self._store = store
        self._remote = remote
        self._repositories = repositories

    async def fetch_and_merge(self, kind: str) -> MergeReport:
        """
        Fetch every remote row of a kind and merge them in one local transaction.

        Raises RemoteError if the fetch fails; nothing is written locally then.
        """
        schema = get_schema(kind)
        repo = self._repositories[kind]

        remote_rows = await self._remote.select_all(schema.table)
        logger.info(f"🔄 Fetched {len(remote_rows)} {schema.table} from remote")

        def _merge(conn: sqlite3.Connection) -> MergeReport:
            report = MergeReport(entity_kind=kind)
            for remote_row in remote_rows:
                if not remote_row.get("uuid"):
                    logger.warning(f"⚠️ Skipping remote {schema.display_name} {remote_row.get('id')} without uuid")
                    continue
                outcome = repo.apply_remote_row(conn, remote_row)
                setattr(report, outcome, getattr(report, outcome) + 1)
            return report

        report = await self._store.run(_merge)
        if report.changed:
            logger.info(
                f"✅ Merged {schema.table}: {report.inserted} inserted, "
                f"{report.updated} updated, {report.deleted} deleted"
            )
        return report
