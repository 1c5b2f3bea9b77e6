"""
Geometry Validation

Counts features whose geometry is not valid (self-intersecting rings,
unclosed polygons, ...). Validation is read-only and may run on a single
background worker; progress and completion reach the caller through a
listener and a one-shot completion callback.
"""

import logging
import queue
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from shapely.validation import explain_validity

from ..domain.models import Feature
from ..types import ValidationReport

logger = logging.getLogger(__name__)

# Events put on a QueueProgressListener's queue
STARTED, PROGRESS, COMPLETE, OUTCOME = "started", "progress", "complete", "outcome"


class ProgressListener:
    """Receives progress of a validation scan. The base class ignores everything."""

    def started(self, total: Optional[int]) -> None:
        pass

    def progress(self, done: int) -> None:
        pass

    def complete(self) -> None:
        pass


class QueueProgressListener(ProgressListener):
    """
    Hand progress events to another thread through a queue.

    Events are ``(kind, value)`` tuples. ``finished`` doubles as a ValidationTask
    completion callback, so the consumer always sees a final OUTCOME event,
    even when the scan fails before completing.
    """

    def __init__(self, events: Optional[queue.Queue] = None):
        self.events = events if events is not None else queue.Queue()

    def started(self, total: Optional[int]) -> None:
        self.events.put((STARTED, total))

    def progress(self, done: int) -> None:
        self.events.put((PROGRESS, done))

    def complete(self) -> None:
        self.events.put((COMPLETE, None))

    def finished(self, outcome: "ValidationOutcome") -> None:
        self.events.put((OUTCOME, outcome))


class GeometryValidationVisitor:
    """Visit features one at a time and collect the ids of invalid geometries."""

    def __init__(self):
        self.checked = 0
        self.invalid_ids: list[str] = []

    def visit(self, feature: Feature) -> None:
        self.checked += 1
        geometry = feature.geometry
        if geometry is None:
            return
        if not geometry.is_valid:
            feature_id = feature.id or f"#{self.checked}"
            logger.info(f"Invalid geometry: {feature_id}")
            logger.debug(f"{feature_id}: {explain_validity(geometry)}")
            self.invalid_ids.append(feature_id)

    def report(self) -> ValidationReport:
        return ValidationReport(features_checked=self.checked, invalid_ids=tuple(self.invalid_ids))


def validate_features(
    features: Iterable[Feature],
    progress: Optional[ProgressListener] = None,
    total: Optional[int] = None
) -> ValidationReport:
    """
    Check every feature's geometry for validity.

    Args:
        features: Features to check (not modified)
        progress: Listener notified per feature
        total: Expected feature count, passed to ``progress.started``

    Returns:
        ValidationReport with the ids of invalid features
    """
    progress = progress or ProgressListener()
    visitor = GeometryValidationVisitor()

    progress.started(total)
    for feature in features:
        visitor.visit(feature)
        progress.progress(visitor.checked)
    progress.complete()

    report = visitor.report()
    logger.info(f"Validated {report.features_checked:,} features: {report.message}")
    return report


@dataclass(frozen=True)
class ValidationOutcome:
    """What a background validation produced: a report or the error that stopped it."""
    report: Optional[ValidationReport] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ValidationTask:
    """
    Run validate_features on one background worker.

    ``features_factory`` is called on the worker so the store is opened and
    read there. ``on_done`` receives the outcome exactly once, on the worker
    thread.
    """

    def __init__(self, features_factory: Callable[[], Iterable[Feature]], total: Optional[int] = None):
        self.features_factory = features_factory
        self.total = total
        self._lock = threading.Lock()
        self._delivered = False
        self._executor: Optional[ThreadPoolExecutor] = None

    def _deliver(self, on_done: Callable[[ValidationOutcome], None], outcome: ValidationOutcome) -> None:
        with self._lock:
            if self._delivered:
                return
            self._delivered = True
        on_done(outcome)

    def _run(self, on_done, progress) -> ValidationReport:
        try:
            report = validate_features(self.features_factory(), progress=progress, total=self.total)
        except Exception as e:
            logger.error(f"Validation failed: {e}")
            self._deliver(on_done, ValidationOutcome(error=e))
            raise
        self._deliver(on_done, ValidationOutcome(report=report))
        return report

    def start(
        self,
        on_done: Callable[[ValidationOutcome], None],
        progress: Optional[ProgressListener] = None
    ) -> Future:
        """Submit the scan and return its Future; a task can be started once."""
        if self._executor is not None:
            raise RuntimeError("Validation task already started")

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="geolab-validate")
        future = self._executor.submit(self._run, on_done, progress)
        self._executor.shutdown(wait=False)
        return future
