"""Background worker for PR analysis pipeline runs.

- Daemon thread with its own asyncio event loop
- Queue-based job processing with Semaphore concurrency control
- enqueue() is thread-safe and is the orchestrator's scheduler
- Recovery sweep at start and every poll_interval reschedules PENDING /
  PROCESSING analyses that have not been touched within the grace period

An analysis id is never run twice concurrently: ids already queued or
running are ignored by enqueue().
"""

import asyncio
import logging
import threading
from typing import List, Optional, Set

from .orchestrator import AnalysisOrchestrator

logger = logging.getLogger(__name__)


class AnalysisWorker:
    """Background worker driving AnalysisOrchestrator.run_pipeline.

    Lifecycle:
    1. start() spawns daemon thread with asyncio loop
    2. _recovery_loop() reschedules stale analyses every poll_interval
    3. _main_loop() pulls ids off the queue and runs each pipeline in a
       worker thread, at most max_concurrent at a time
    4. stop() signals shutdown
    """

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        poll_interval: float = 30.0,
        max_concurrent: int = 2,
        recovery_grace_seconds: float = 600.0,
    ):
        self._orchestrator = orchestrator
        self.poll_interval = poll_interval
        self.max_concurrent = max_concurrent
        self.recovery_grace_seconds = recovery_grace_seconds

        self._queue: Optional[asyncio.Queue] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

        self._lock = threading.Lock()
        self._scheduled: Set[str] = set()     # queued or running
        self._backlog: List[str] = []         # enqueued before the loop started

    def start(self):
        """Start the background worker thread."""
        if self._running:
            logger.warning("Analysis worker already running")
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name="analysis-worker"
        )
        self._thread.start()
        logger.info("Analysis worker started")

    def stop(self):
        """Stop the background worker."""
        self._running = False
        if self._loop:
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=5.0)
        logger.info("Analysis worker stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def enqueue(self, analysis_id: str) -> bool:
        """Queue a pipeline run. Returns False if the id is already scheduled."""
        with self._lock:
            if analysis_id in self._scheduled:
                logger.debug(f"Analysis {analysis_id} already scheduled")
                return False
            self._scheduled.add(analysis_id)
            loop = self._loop
            if loop is None or self._queue is None:
                self._backlog.append(analysis_id)
                return True

        loop.call_soon_threadsafe(self._queue.put_nowait, analysis_id)
        return True

    def pending_count(self) -> int:
        with self._lock:
            return len(self._scheduled)

    # ── Event loop ────────────────────────────────────────────────────

    def _run_loop(self):
        """Run the async event loop in the background thread."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        with self._lock:
            self._queue = asyncio.Queue()
            for analysis_id in self._backlog:
                self._queue.put_nowait(analysis_id)
            self._backlog.clear()
            self._loop = loop

        try:
            loop.run_until_complete(self._main_loop())
        except Exception as e:
            logger.error(f"Analysis worker loop error: {e}")
        finally:
            with self._lock:
                self._loop = None
                self._queue = None
            loop.close()

    async def _main_loop(self):
        recovery_task = asyncio.create_task(self._recovery_loop())

        while self._running:
            try:
                analysis_id = await asyncio.wait_for(
                    self._queue.get(),
                    timeout=self.poll_interval,
                )
                asyncio.create_task(self._process_with_semaphore(analysis_id))
            except asyncio.TimeoutError:
                continue
            except Exception as e:
                logger.error(f"Error in analysis main loop: {e}")

        recovery_task.cancel()

    async def _recovery_loop(self):
        """Reschedule analyses stuck in PENDING/PROCESSING."""
        while self._running:
            try:
                await asyncio.to_thread(self._recover)
            except Exception as e:
                logger.error(f"Error recovering stale analyses: {e}")
            await asyncio.sleep(self.poll_interval)

    def _recover(self) -> List[str]:
        stale = self._orchestrator.recover_stale(self.recovery_grace_seconds)
        if stale:
            logger.info(f"Recovery sweep rescheduled {len(stale)} analyses")
        return stale

    async def _process_with_semaphore(self, analysis_id: str):
        """Process one analysis with semaphore for concurrency control."""
        async with self._semaphore:
            await asyncio.to_thread(self._process_sync, analysis_id)

    def _process_sync(self, analysis_id: str):
        """Run one pipeline (thread pool). Always releases the id."""
        try:
            result = self._orchestrator.run_pipeline(analysis_id)
            logger.info(f"Pipeline for {analysis_id} finished: {result.status}")
        except Exception as e:
            # run_pipeline records its own failures
            logger.error(f"Unexpected pipeline error for {analysis_id}: {e}", exc_info=True)
        finally:
            with self._lock:
                self._scheduled.discard(analysis_id)
