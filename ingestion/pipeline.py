"""Top-level orchestration of one repository synchronization cycle.

A cycle refreshes the remote index, walks the artifacts changed since the
stored watermark, and for each one fetches, scans, and merges it. Fetch and
scan problems only cost the affected item; a failed merge or index refresh
aborts the cycle without touching the watermark. The watermark is committed
last, in its own transaction, so a crash before that point just replays the
final items on the next run.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path

from tenacity.wait import wait_base

from ingestion.change_detector import ChangeDetector
from ingestion.dispatcher import ScanDispatcher
from ingestion.errors import (
    AnalysisError,
    CycleFatalError,
    MergeError,
    ResolutionError,
)
from ingestion.fetcher import ArtifactFetcher
from ingestion.merger import IngestionMerger
from ingestion.models import IngestionContext
from ingestion.progress import TRANSITIONS, CycleStage
from ingestion.watermark import WatermarkStore, format_timestamp
from types_models import ArtifactInfo, CycleReport, Node

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(log_file: str | Path | None, level: str = "INFO") -> None:
    """Mirror ingestion logs to stderr and to the log file for durable diagnostics."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    for logger_name in ["urllib3", "requests"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


class RunController:
    """Runs synchronization cycles for the repository configured in the context."""

    def __init__(
        self,
        ctx: IngestionContext,
        *,
        fetch_wait: wait_base | None = None,
    ) -> None:
        super().__init__()
        self._ctx = ctx
        cfg = ctx.config
        self._watermarks = WatermarkStore(ctx.store)
        self._detector = ChangeDetector(ctx.remote_index)
        self._fetcher = ArtifactFetcher(
            ctx.download_service,
            ctx.credentials,
            attempts=cfg.fetch_retry_attempts,
            max_wait=cfg.fetch_retry_max_wait,
            wait=fetch_wait,
        )
        self._dispatcher = ScanDispatcher(ctx.analyzers)
        self._merger = IngestionMerger(ctx.store)
        self._stop_event = threading.Event()
        self._state = CycleStage.IDLE

    @property
    def state(self) -> CycleStage:
        return self._state

    @property
    def merger(self) -> IngestionMerger:
        return self._merger

    def request_stop(self) -> None:
        """Ask the running cycle to finish after the item in flight."""
        self._stop_event.set()

    def _transition(self, stage: CycleStage) -> None:
        if stage not in TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Illegal cycle transition {self._state.value} -> {stage.value}"
            )
        logger.debug("Cycle stage %s -> %s", self._state.value, stage.value)
        self._state = stage

    def run_cycle(self) -> CycleReport:
        """Run one synchronization cycle and return its report.

        Raises ``IndexRefreshError`` or ``MergeError`` (with ``.report`` set)
        when the cycle has to be aborted.
        """
        if self._state is not CycleStage.IDLE:
            raise RuntimeError("A synchronization cycle is already running")

        self._stop_event.clear()
        cap = self._ctx.config.processing_cap
        repository_url = self._ctx.repository_url
        report = CycleReport(repository_url=repository_url)
        last_merged: datetime | None = None
        newest_seen: datetime | None = None

        try:
            self._transition(CycleStage.DETECTING)
            repository = self._merger.find_or_create_repository(repository_url)
            previous = self._watermarks.get(repository_url)
            report.previous_watermark = previous
            logger.info(
                "🔎 Detecting changes in %s since %s",
                repository_url,
                format_timestamp(previous) or "the beginning",
            )
            self._detector.refresh(self._ctx.credentials)

            candidates = self._detector.since(previous)
            try:
                for info in candidates:
                    report.discovered += 1
                    if info.last_modified is not None and (
                        newest_seen is None or info.last_modified > newest_seen
                    ):
                        newest_seen = info.last_modified

                    node = self._process(repository, info, report)
                    if node is not None and info.last_modified is not None:
                        last_merged = info.last_modified

                    # Re-merging an item already in the graph does not use up the cap.
                    if cap and report.merged - report.unchanged >= cap:
                        report.capped = True
                        logger.info("Processing cap of %d artifacts reached", cap)
                        break
                    if self._stop_event.is_set():
                        report.stopped = True
                        logger.info("Stop requested; ending cycle after %s", info.coordinate)
                        break
            finally:
                candidates.close()

            self._transition(CycleStage.FINALIZING)
            if report.capped or report.stopped:
                # Resume exactly after the last merged item, not at "now".
                target = last_merged
            else:
                target = newest_seen
            if target is not None and report.retry_from is not None:
                target = min(target, report.retry_from)
            report.watermark = self._commit_watermark(repository_url, previous, target)
            report.status = "completed"
        except CycleFatalError as exc:
            report.status = "failed"
            report.error = str(exc)
            exc.report = report
            logger.error("❌ Cycle aborted for %s: %s", repository_url, exc)
            raise
        finally:
            self._state = CycleStage.IDLE

        logger.info(
            "✅ Scanned %d new artifacts (discovered=%d, unchanged=%d, skipped=%d, failed=%d)",
            report.merged - report.unchanged,
            report.discovered,
            report.unchanged,
            report.skipped,
            report.failed,
        )
        return report

    def _commit_watermark(
        self,
        repository_url: str,
        previous: datetime | None,
        target: datetime | None,
    ) -> datetime | None:
        if target is None:
            return previous
        try:
            return self._watermarks.set(repository_url, target)
        except Exception as exc:
            raise MergeError(None, f"watermark commit failed: {exc}") from exc

    def _process(
        self, repository: Node, info: ArtifactInfo, report: CycleReport
    ) -> Node | None:
        """Fetch, scan, and merge one artifact; None when the item was skipped."""
        coordinate = info.coordinate
        self._transition(CycleStage.FETCHING)
        try:
            with self._fetcher.fetch(coordinate) as resource:
                report.fetched += 1
                self._transition(CycleStage.SCANNING)
                descriptor = self._dispatcher.dispatch(resource, str(resource.path))
        except ResolutionError as exc:
            report.record(info, "fetch", exc.reason, failed=True, category="resolution failed")
            if exc.transient and info.last_modified is not None:
                # Hold the watermark so the next cycle offers this item again.
                if report.retry_from is None or info.last_modified < report.retry_from:
                    report.retry_from = info.last_modified
            logger.warning("⚠️ %s", exc)
            return None
        except AnalysisError as exc:
            report.record(info, "scan", exc.reason, failed=True, category="analysis failed")
            logger.warning("⚠️ %s", exc)
            logger.debug("Analysis traceback for %s", coordinate, exc_info=True)
            return None

        if descriptor is None:
            report.record(
                info,
                "scan",
                "no analyzer accepted the artifact",
                failed=False,
                category="not applicable",
            )
            logger.debug("Could not scan artifact: %s", coordinate)
            return None

        report.analyzed += 1
        self._transition(CycleStage.MERGING)
        unchanged = self._merger.is_current(repository, info)
        node = self._merger.merge(repository, info, descriptor)
        report.merged += 1
        if unchanged:
            report.unchanged += 1
        return node


def print_summary(report: CycleReport) -> None:
    """Emit final cycle statistics."""
    print("-------------------------------------------------")
    status = "✅ Done." if report.status == "completed" else "❌ Failed."
    print(f"{status} Repository: {report.repository_url}")
    print(
        f"📋 Discovered: {report.discovered} | Fetched: {report.fetched} | "
        + f"Analyzed: {report.analyzed} | Merged: {report.merged} (unchanged: {report.unchanged})"
    )
    print(f"⚠️  Skipped: {report.skipped} | Failed: {report.failed}")

    if report.skip_reasons:
        print("📊 Skip breakdown:")
        for reason, count in sorted(report.skip_reasons.items()):
            plural = "artifacts" if count != 1 else "artifact"
            print(f"   • {count} {plural}: {reason}")

    if report.capped:
        print("🛑 Processing cap reached; the next cycle resumes from here.")
    if report.stopped:
        print("🛑 Stopped on request; the next cycle resumes from here.")
    watermark = format_timestamp(report.watermark) or "unset"
    print(f"🕒 Watermark: {watermark}")
    if report.retry_from is not None:
        print(
            "🔁 Downloads failed transiently; the watermark is held at "
            + f"{format_timestamp(report.retry_from)} so they are retried next cycle."
        )
    if report.error:
        print(f"   Error: {report.error}")


__all__ = ["RunController", "configure_logging", "print_summary"]
