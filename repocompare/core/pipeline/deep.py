"""Background deep analysis of one repository."""

import logging
from uuid import UUID

from ..db import DatabaseManager
from ..db.models import Repository
from ..errors import SourceNotFoundError
from ..progress import NullBroadcaster

logger = logging.getLogger(__name__)


class DeepAnalysisPipeline:
    """Load the repository and run DeepAnalyzer inside one session."""

    def __init__(self, db_manager: DatabaseManager, deep_analyzer):
        self._db = db_manager
        self._analyzer = deep_analyzer

    def run(self, repository_id, broadcaster=None):
        broadcaster = broadcaster or NullBroadcaster()
        rid = repository_id if isinstance(repository_id, UUID) else UUID(str(repository_id))

        with self._db.get_session() as session:
            repository = session.get(Repository, rid)
            if repository is None:
                raise SourceNotFoundError(f"Repository {repository_id} not found")
            analysis = self._analyzer.analyze(session, repository, broadcaster=broadcaster)

        logger.info(f"Deep analysis {analysis.analysis_id} stored for {repository.full_name}")
        return analysis
