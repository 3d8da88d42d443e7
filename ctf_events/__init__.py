"""
CTF Events - timed, code-based quiz events with frozen question snapshots.

This package provides:
- Question catalog and question sets authored by admins
- Events that embed an immutable snapshot of their question set
- Answer scoring with hint penalties and at-most-once credit per question
- Propagation of catalog edits into existing event snapshots
- JSON API plus participant board and leaderboard pages
"""

from .config import EventConfig
from .database import DatabaseManager
from .events import EventService
from .propagation import SnapshotPropagator
from .questions import QuestionService, QuestionSetService
from .scoring import AnswerEvaluator
from .server import EventSystem
from .web_handlers import WebHandlers

__version__ = "2.0.0"
__author__ = "CTF Events Contributors"

__all__ = [
    "EventConfig",
    "DatabaseManager",
    "EventService",
    "SnapshotPropagator",
    "QuestionService",
    "QuestionSetService",
    "AnswerEvaluator",
    "WebHandlers",
    "EventSystem",
]
