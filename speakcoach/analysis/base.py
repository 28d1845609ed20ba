"""Sampling loop shared by the voice and facial analyzers

Each analyzer runs as an independent asyncio task that suspends between ticks
waiting for the next frame from its stream handle. A tick is a bounded unit of
work; the loop never waits on the other analyzer or on the controller.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from speakcoach.analysis.window import RollingWindow
from speakcoach.models.enums import MetricSource
from speakcoach.models.errors import DeviceUnavailableError
from speakcoach.models.interfaces import StreamHandle
from speakcoach.models.results import MetricSnapshot, SubReport
from speakcoach.session.context import SessionContext


logger = logging.getLogger(__name__)


class SignalAnalyzer(ABC):
    """Sampling loop over one stream handle feeding one rolling window.

    Stopping is cooperative: ``request_stop()`` lets an in-flight tick finish
    and only cancels the task outright while it is suspended between ticks.
    Once ``finalize()`` has run, any tick that completes late is discarded.

    Attributes:
        source: Sensor this analyzer samples
        window: Rolling window of recent snapshots
        track_lost: Whether the handle reported the track lost mid-recording
        stop_requested: Whether a stop has been requested
        ticks: Number of snapshots recorded
    """

    source: MetricSource

    def __init__(self, context: SessionContext, horizon: float):
        self.context = context
        self.window: RollingWindow[MetricSnapshot] = RollingWindow(horizon)
        self.track_lost = False
        self.stop_requested = False
        self.ticks = 0
        self.first_timestamp: Optional[float] = None
        self.last_timestamp: Optional[float] = None
        self._in_tick = False
        self._finalized = False
        self._report: Optional[SubReport] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return f"{self.source.value}_analyzer"

    @property
    @abstractmethod
    def handle(self) -> StreamHandle:
        pass

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def finalized(self) -> bool:
        return self._finalized

    def start(self) -> asyncio.Task:
        """Launch the sampling loop as an independent asyncio task"""
        self._task = asyncio.create_task(self.run(), name=self.name)
        return self._task

    async def run(self) -> None:
        """Sample frames until stopped, the track ends, or the track is lost"""
        logger.info(f"{self.name} sampling loop started")
        try:
            while not self.stop_requested:
                frame = await self.handle.read()
                if frame is None:
                    logger.info(f"{self.name} track ended")
                    break
                if self.stop_requested or self._finalized:
                    break

                self._in_tick = True
                try:
                    await self._tick(frame)
                except DeviceUnavailableError:
                    raise
                except Exception as e:
                    logger.error(f"{self.name} tick failed: {e}", exc_info=True)
                finally:
                    self._in_tick = False

        except DeviceUnavailableError as e:
            self.track_lost = True
            logger.warning(f"{self.name} lost its track, soft-stopping: {e}")
        except asyncio.CancelledError:
            logger.info(f"{self.name} sampling loop cancelled")
        finally:
            await self._on_loop_exit()
            logger.info(f"{self.name} sampling loop stopped after {self.ticks} ticks")

    def request_stop(self) -> None:
        """Ask the loop to stop after any in-flight tick"""
        self.stop_requested = True
        if self._task is not None and not self._task.done() and not self._in_tick:
            self._task.cancel()

    def cancel(self) -> None:
        """Stop immediately; whatever the in-flight tick produces is discarded"""
        self.stop_requested = True
        self.freeze()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def freeze(self) -> None:
        """Stop accepting snapshots"""
        self._finalized = True
        self.window.freeze()

    def _record(self, snapshot: MetricSnapshot) -> bool:
        """Store a snapshot and publish it for live display.

        Returns:
            False if the snapshot was discarded (late tick or stale timestamp)
        """
        if self._finalized:
            logger.debug(f"{self.name} discarding tick completed after finalization")
            return False

        latest = self.window.latest_timestamp
        if latest is not None and snapshot.timestamp <= latest:
            logger.debug(f"{self.name} dropping non-advancing timestamp {snapshot.timestamp}")
            return False

        self.window.push(snapshot)
        self.ticks += 1
        if self.first_timestamp is None:
            self.first_timestamp = snapshot.timestamp
        self.last_timestamp = snapshot.timestamp
        self.context.publish_snapshot(snapshot)
        return True

    def finalize(self) -> SubReport:
        """Freeze the analyzer and build its sub-report from buffered data.

        Safe to call more than once; the first report is returned again.
        """
        if self._report is not None:
            return self._report
        self.freeze()
        self._report = self._build_report()
        logger.info(f"{self.name} finalized: score={self._report.overall_score}, "
                    f"snapshots={self._report.snapshot_count}, "
                    f"reduced_confidence={self._report.reduced_confidence}")
        return self._report

    @abstractmethod
    async def _tick(self, frame) -> None:
        """Process one frame into at most one snapshot"""
        pass

    @abstractmethod
    def _build_report(self) -> SubReport:
        pass

    async def _on_loop_exit(self) -> None:
        pass
