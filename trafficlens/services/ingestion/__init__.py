from .service import LogIngestionService, NoLogDataError

__all__ = ["LogIngestionService", "NoLogDataError"]
