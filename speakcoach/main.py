"""Main Application Entry Point

Replays a recorded practice clip through a full session: acquire the tracks,
record until both tracks end (or the session time limit), then print the
session report and the rewards it earned.

Usage:
    python -m speakcoach.main <clip.mp4> [--seed N] [--no-transcription] [--redis]
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from speakcoach.analysis.providers import RandomizedAnalysisProvider, SignalAnalysisProvider
from speakcoach.analysis.transcription import WhisperTranscriptionProvider
from speakcoach.config.config_loader import config
from speakcoach.input.capture import FileCaptureProvider
from speakcoach.models.enums import SessionState
from speakcoach.models.errors import DeviceError
from speakcoach.models.interfaces import RewardsSink
from speakcoach.output.publisher import RedisSnapshotPublisher
from speakcoach.session.controller import SessionController


logger = logging.getLogger(__name__)


def setup_logging() -> None:
    log_file = Path(config.get('logging.file', 'logs/speakcoach.log'))
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, str(config.get('logging.level', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )


class LoggingRewardsSink(RewardsSink):
    """Rewards sink that only logs what was earned"""

    def __init__(self):
        self.experience = 0
        self.achievements: List[str] = []

    def on_experience_gained(self, points: int) -> None:
        self.experience += points
        logger.info(f"Gained {points} XP")

    def on_achievement_unlocked(self, name: str) -> None:
        self.achievements.append(name)
        logger.info(f"Achievement unlocked: {name}")


class PracticeReplay:
    """Runs one practice session over a recorded clip

    Attributes:
        controller: Session controller driving the session
        publisher: Optional Redis publisher for live snapshots
    """

    def __init__(self, video_path: str, seed: Optional[int] = None,
                 transcription: bool = True, publish: bool = False):
        analysis = RandomizedAnalysisProvider(seed) if seed is not None else SignalAnalysisProvider()
        transcriber = WhisperTranscriptionProvider() if transcription else None
        self.rewards_sink = LoggingRewardsSink()
        self.controller = SessionController(
            capture=FileCaptureProvider(video_path),
            analysis_provider=analysis,
            transcription_provider=transcriber,
            rewards_sink=self.rewards_sink,
        )
        self.publisher = RedisSnapshotPublisher(self.controller.bus) if publish else None
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        logger.info("Stop requested")
        self._stop.set()

    async def _wait_for_tracks(self) -> None:
        """Return once every analyzer has stopped sampling"""
        tasks = [a.task for a in self.controller.analyzers if a.task is not None]
        if tasks:
            await asyncio.wait(tasks)

    async def run(self):
        if self.publisher is not None:
            self.publisher.start()

        try:
            await self.controller.start_session()
            await self.controller.start_recording()

            tracks = asyncio.create_task(self._wait_for_tracks())
            stop = asyncio.create_task(self._stop.wait())
            await asyncio.wait({tracks, stop}, return_when=asyncio.FIRST_COMPLETED)
            for task in (tracks, stop):
                task.cancel()

            if self.controller.state is SessionState.RECORDING:
                await self.controller.stop_recording()
            return self.controller.report
        finally:
            self.controller.reset()
            if self.publisher is not None:
                await self.publisher.close()


def setup_signal_handlers(replay: PracticeReplay):
    """Stop the recording gracefully on SIGINT/SIGTERM"""
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, replay.request_stop)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {signum} not supported on this platform")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Score a recorded speaking practice clip")
    parser.add_argument("video_path", help="Media file with an audio and a video track")
    parser.add_argument("--seed", type=int, default=None,
                        help="Use randomized analysis with this seed instead of signal analysis")
    parser.add_argument("--no-transcription", action="store_true",
                        help="Skip speech recognition (voice metrics degrade to volume and pitch)")
    parser.add_argument("--redis", action="store_true",
                        help="Publish live snapshots to the configured Redis stream")
    return parser.parse_args(argv)


async def main_async(argv: Optional[List[str]] = None) -> int:
    """Async main entry point."""
    args = parse_args(argv)

    if not Path(args.video_path).exists():
        logger.error(f"Video file not found: {args.video_path}")
        return 1

    replay = PracticeReplay(
        args.video_path,
        seed=args.seed,
        transcription=not args.no_transcription,
        publish=args.redis,
    )
    setup_signal_handlers(replay)

    try:
        report = await replay.run()
    except DeviceError as e:
        logger.error(f"Could not start session: {e}")
        return 1

    if report is None:
        logger.warning("Session ended without a report")
        return 1

    rewards = replay.controller.aggregator.compute_rewards(report)
    print(json.dumps({
        "report": report.to_dict(),
        "rewards": {
            "experience_points": rewards.experience_points,
            "achievements": list(rewards.achievements),
        },
    }, indent=2))
    return 0


def main():
    """Main entry point."""
    setup_logging()
    try:
        sys.exit(asyncio.run(main_async()))
    except KeyboardInterrupt:
        logger.info("Application terminated by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
