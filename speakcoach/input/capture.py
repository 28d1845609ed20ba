"""File-backed capture provider

Replays a recorded clip as if it were a live microphone and camera. Each
track gets its own PyAV container so the two analyzers read independently.
Audio is resampled to mono at the configured rate and cut into fixed-length
frames; video frames are decoded to RGB. Timestamps are seconds since the
start of each track.
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Tuple

import av
import numpy as np

from speakcoach.config.config_loader import config
from speakcoach.models.errors import DevicePermissionDeniedError, DeviceUnavailableError
from speakcoach.models.frames import AudioFrame, VideoFrame
from speakcoach.models.interfaces import AudioHandle, CaptureProvider, StreamHandle, VideoHandle


logger = logging.getLogger(__name__)


def open_track(path: str, kind: str):
    """Open a container and pick its first stream of ``kind``.

    Raises:
        DevicePermissionDeniedError: If the file cannot be read
        DeviceUnavailableError: If the file or the track is missing
    """
    if not Path(path).exists():
        raise DeviceUnavailableError(f"Media file not found: {path}", track=kind)
    try:
        container = av.open(path)
    except PermissionError as e:
        raise DevicePermissionDeniedError(f"Cannot read {path}: {e}") from e
    except Exception as e:
        raise DeviceUnavailableError(f"Cannot open {path}: {e}", track=kind) from e

    streams = [s for s in container.streams if s.type == kind]
    if not streams:
        container.close()
        raise DeviceUnavailableError(f"No {kind} track in {path}", track=kind)
    return container, streams[0]


class _FileTrack:
    """Pacing and lifecycle shared by both file-backed handles

    Decoding runs in worker threads. A decode step and the container close
    never overlap: a close that arrives mid-decode is carried out by the
    decoding thread once its step finishes.
    """

    def __init__(self, container, stream, realtime: bool):
        self.container = container
        self.stream = stream
        self.realtime = realtime
        self._closed = False
        self._ended = False
        self._container_closed = False
        self._lock = threading.Lock()
        self._clock_start: Optional[float] = None

    @property
    def is_live(self) -> bool:
        return not self._closed and not self._ended

    async def _pace(self, timestamp: float) -> None:
        """Hold a frame back until its timestamp when replaying in real time"""
        if not self.realtime:
            return
        loop = asyncio.get_running_loop()
        if self._clock_start is None:
            self._clock_start = loop.time() - timestamp
        delay = self._clock_start + timestamp - loop.time()
        if delay > 0:
            await asyncio.sleep(delay)

    def _decode_step(self, step: Callable[[], Any]) -> Any:
        """Run one decode step in a worker thread; None once the track is closed"""
        try:
            with self._lock:
                if self._closed:
                    return None
                return step()
        finally:
            if self._closed:
                with self._lock:
                    self._close_container()

    def _close_container(self) -> None:
        # Caller holds self._lock
        if self._container_closed:
            return
        self._container_closed = True
        try:
            self.container.close()
        except Exception as e:
            logger.warning(f"Error closing {self.track} container: {e}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._lock.acquire(blocking=False):
            try:
                self._close_container()
            finally:
                self._lock.release()
        else:
            logger.debug(f"{self.track} container closes when the in-flight decode finishes")


class FileAudioHandle(_FileTrack, AudioHandle):
    """Audio track of a media file, delivered in fixed-length mono frames"""

    def __init__(self, container, stream, sample_rate: int = 16000,
                 frame_duration: float = 0.1, realtime: bool = False):
        super().__init__(container, stream, realtime)
        self.sample_rate = sample_rate
        self.frame_duration = frame_duration
        self.chunk_size = max(1, int(round(sample_rate * frame_duration)))
        self._resampler = av.AudioResampler(format='flt', layout='mono', rate=sample_rate)
        self._decoder: Optional[Iterator] = container.decode(stream)
        self._pending = np.zeros(0, dtype=np.float32)
        self._emitted = 0

    def _decode_more(self) -> bool:
        """Append the next decoded frame to the pending samples; False at end of stream"""
        if self._decoder is None:
            return False
        try:
            av_frame = next(self._decoder)
        except StopIteration:
            # Flush whatever the resampler still holds
            self._decoder = None
            av_frame = None
        chunks = [f.to_ndarray().reshape(-1) for f in self._resampler.resample(av_frame)]
        if chunks:
            self._pending = np.concatenate([self._pending] + [c.astype(np.float32) for c in chunks])
        return av_frame is not None or bool(chunks)

    def _next_chunk(self) -> Optional[np.ndarray]:
        while len(self._pending) < self.chunk_size:
            if not self._decode_more():
                break
        if len(self._pending) == 0:
            return None
        chunk = self._pending[:self.chunk_size]
        self._pending = self._pending[self.chunk_size:]
        return chunk

    async def read(self) -> Optional[AudioFrame]:
        if self._closed or self._ended:
            return None
        try:
            samples = await asyncio.to_thread(self._decode_step, self._next_chunk)
        except Exception as e:
            self._ended = True
            raise DeviceUnavailableError(f"Audio track failed: {e}", track=self.track) from e

        if samples is None:
            self._ended = True
            logger.info(f"Audio track ended after {self._emitted / self.sample_rate:.1f}s")
            return None

        timestamp = self._emitted / self.sample_rate
        self._emitted += len(samples)
        await self._pace(timestamp)
        return AudioFrame(
            samples=samples,
            sample_rate=self.sample_rate,
            timestamp=timestamp,
            duration=len(samples) / self.sample_rate,
        )


class FileVideoHandle(_FileTrack, VideoHandle):
    """Video track of a media file, delivered as RGB frames"""

    def __init__(self, container, stream, realtime: bool = False):
        super().__init__(container, stream, realtime)
        self._decoder: Iterator = container.decode(stream)
        self._first_time: Optional[float] = None
        self.frame_count = 0
        rate = stream.average_rate
        self.fps = float(rate) if rate else 30.0

    def _next_frame(self) -> Optional[Tuple[Optional[float], np.ndarray]]:
        try:
            av_frame = next(self._decoder)
        except StopIteration:
            return None
        return av_frame.time, av_frame.to_ndarray(format='rgb24')

    async def read(self) -> Optional[VideoFrame]:
        if self._closed or self._ended:
            return None
        try:
            decoded = await asyncio.to_thread(self._decode_step, self._next_frame)
        except Exception as e:
            self._ended = True
            raise DeviceUnavailableError(f"Video track failed: {e}", track=self.track) from e

        if decoded is None:
            self._ended = True
            logger.info(f"Video track ended after {self.frame_count} frames")
            return None

        frame_time, image = decoded
        if frame_time is None:
            frame_time = self.frame_count / self.fps
        if self._first_time is None:
            self._first_time = frame_time
        timestamp = max(frame_time - self._first_time, 0.0)

        frame = VideoFrame(image=image, timestamp=timestamp, frame_number=self.frame_count)
        self.frame_count += 1
        await self._pace(timestamp)
        return frame


class FileCaptureProvider(CaptureProvider):
    """Capture provider that replays a recorded clip

    Attributes:
        path: Media file with one audio and one video track
        realtime: Pace frames at their timestamps instead of as fast as possible
    """

    def __init__(self, path: str, realtime: Optional[bool] = None):
        self.path = str(path)
        self.realtime = config.get('capture.realtime', False) if realtime is None else realtime
        self.sample_rate = config.get('audio.sample_rate', 16000)
        self.frame_duration = config.get('audio.frame_duration', 0.1)

    def _open(self) -> Tuple[FileAudioHandle, FileVideoHandle]:
        audio_container, audio_stream = open_track(self.path, 'audio')
        try:
            video_container, video_stream = open_track(self.path, 'video')
        except Exception:
            audio_container.close()
            raise

        audio = FileAudioHandle(audio_container, audio_stream, self.sample_rate,
                                self.frame_duration, self.realtime)
        video = FileVideoHandle(video_container, video_stream, self.realtime)
        logger.info(f"Opened {self.path}: audio {audio_stream.codec_context.name}, "
                    f"video {video_stream.codec_context.name} at {video.fps:.1f} fps")
        return audio, video

    async def request_streams(self) -> Tuple[AudioHandle, VideoHandle]:
        logger.info(f"Requesting streams from {self.path}")
        return await asyncio.to_thread(self._open)

    def release(self, handle: StreamHandle) -> None:
        handle.close()
