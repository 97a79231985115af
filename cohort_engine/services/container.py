"""Wiring for the engine's services.

Everything shares one InMemoryDatabase and one Clock.  Tests build a
fresh container per test with a FixedClock; the app builds one at
import time (see api/dependencies.py).

With DATABASE_URL set (or a sessionmaker passed in) the store is a
SqlDatabase and the coin ledger and completion facts live in Postgres,
so their unique keys hold across worker processes.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from cohort_engine.core.clock import Clock, SystemClock
from cohort_engine.core.config import SETTINGS, Settings
from cohort_engine.db.memory import InMemoryDatabase
from cohort_engine.db.sql import SqlDatabase, create_sync_engine
from cohort_engine.repos.activity_repo import InMemoryActivityRepo
from cohort_engine.repos.coin_ledger_repo import CoinLedgerRepo, InMemoryCoinLedgerRepo
from cohort_engine.repos.completion_repo import CompletionRepo, InMemoryCompletionRepo
from cohort_engine.repos.content_repo import InMemoryContentRepo
from cohort_engine.repos.pg_coin_ledger_repo import PgCoinLedgerRepo
from cohort_engine.repos.pg_completion_repo import PgCompletionRepo
from cohort_engine.repos.progress_repo import InMemoryProgressRepo
from cohort_engine.repos.quiz_attempt_repo import InMemoryQuizAttemptRepo
from cohort_engine.services.assignment_review import AssignmentReviewService
from cohort_engine.services.coin_ledger import CoinLedgerService
from cohort_engine.services.enrollment import EnrollmentService
from cohort_engine.services.hierarchy import HierarchyLookup
from cohort_engine.services.leaderboard import LeaderboardService
from cohort_engine.services.lesson_completion import LessonCompletionService
from cohort_engine.services.live_classes import LiveClassService
from cohort_engine.services.module_completion import ModuleCompletionService
from cohort_engine.services.progress_cascade import ProgressCascade
from cohort_engine.services.quiz_scoring import QuizScoringEngine
from cohort_engine.services.topic_completion import TopicCompletionService
from cohort_engine.services.week_unlock import WeekUnlockService


@dataclass(slots=True)
class ServiceContainer:
    settings: Settings
    clock: Clock
    db: InMemoryDatabase
    content: InMemoryContentRepo
    lookup: HierarchyLookup
    ledger: CoinLedgerService
    leaderboard: LeaderboardService
    lessons: LessonCompletionService
    modules: ModuleCompletionService
    weeks: WeekUnlockService
    enrollments: EnrollmentService
    cascade: ProgressCascade
    topics: TopicCompletionService
    quizzes: QuizScoringEngine
    assignments: AssignmentReviewService
    live_classes: LiveClassService


def build_services(
    settings: Settings = SETTINGS,
    clock: Clock | None = None,
    sessions: sessionmaker[Session] | None = None,
) -> ServiceContainer:
    clock = clock or SystemClock()
    if sessions is None and settings.database_url:
        sessions = sessionmaker(
            create_sync_engine(settings.database_url, echo=settings.is_dev),
            expire_on_commit=False,
        )

    db: InMemoryDatabase
    completions: CompletionRepo
    ledger_repo: CoinLedgerRepo
    if sessions is not None:
        db = SqlDatabase(sessions)
        completions = PgCompletionRepo(db)
        ledger_repo = PgCoinLedgerRepo(db)
    else:
        db = InMemoryDatabase()
        completions = InMemoryCompletionRepo(db)
        ledger_repo = InMemoryCoinLedgerRepo(db)

    content = InMemoryContentRepo()
    attempts = InMemoryQuizAttemptRepo(db)
    activity = InMemoryActivityRepo(db)
    progress = InMemoryProgressRepo(db)

    lookup = HierarchyLookup(content)
    ledger = CoinLedgerService(ledger_repo, db, clock)
    lessons = LessonCompletionService(lookup, completions, activity, ledger, db, clock)
    modules = ModuleCompletionService(lookup, lessons)
    weeks = WeekUnlockService(
        lookup, progress, modules, completions, attempts, activity, ledger_repo, clock, settings
    )
    enrollments = EnrollmentService(lookup, progress, weeks, ledger, db, clock, settings)
    cascade = ProgressCascade(lookup, lessons, weeks, enrollments)

    return ServiceContainer(
        settings=settings,
        clock=clock,
        db=db,
        content=content,
        lookup=lookup,
        ledger=ledger,
        leaderboard=LeaderboardService(ledger_repo, progress, settings),
        lessons=lessons,
        modules=modules,
        weeks=weeks,
        enrollments=enrollments,
        cascade=cascade,
        topics=TopicCompletionService(
            lookup, completions, ledger, weeks, cascade, enrollments, db, clock, settings
        ),
        quizzes=QuizScoringEngine(
            lookup, attempts, lessons, weeks, ledger, cascade, db, clock, settings
        ),
        assignments=AssignmentReviewService(
            lookup, activity, lessons, weeks, ledger, cascade, db, clock
        ),
        live_classes=LiveClassService(
            lookup, activity, lessons, weeks, ledger, cascade, db, clock
        ),
    )
