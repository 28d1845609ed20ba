"""Unit tests for the file-backed capture provider"""

import asyncio
import threading
from types import SimpleNamespace
from unittest.mock import Mock, patch

import numpy as np
import pytest

from fakes import FakeCapture, ScriptedVideoHandle, make_video_frames
from speakcoach.input.capture import FileAudioHandle, FileCaptureProvider, FileVideoHandle, open_track
from speakcoach.models.errors import DevicePermissionDeniedError, DeviceUnavailableError
from speakcoach.models.enums import SessionState


def mock_stream(kind, codec="aac", rate=None):
    stream = Mock()
    stream.type = kind
    stream.codec_context.name = codec
    stream.average_rate = rate
    return stream


def mock_container(*streams, decoded=()):
    container = Mock()
    container.streams = list(streams)
    container.decode.return_value = iter(decoded)
    return container


def passthrough_resampler():
    """Resampler stand-in that returns each decoded frame's samples unchanged"""
    resampler = Mock()
    resampler.resample.side_effect = lambda f: [] if f is None else [f]
    return resampler


def pcm(n):
    return SimpleNamespace(to_ndarray=lambda: np.ones((1, n), dtype=np.float32))


def picture(time):
    return SimpleNamespace(time=time, to_ndarray=lambda format=None: np.zeros((2, 2, 3), dtype=np.uint8))


def broken_decoder():
    yield pcm(1600)
    raise RuntimeError("corrupt packet")


def gated_decoder(item, entered: threading.Event, gate: threading.Event):
    """Blocks inside the first decode until ``gate`` is set"""
    entered.set()
    gate.wait(timeout=5.0)
    yield item


@pytest.fixture
def media_file(tmp_path):
    path = tmp_path / "clip.mp4"
    path.touch()
    return str(path)


class TestOpenTrack:

    def test_missing_file(self):
        with pytest.raises(DeviceUnavailableError) as exc:
            open_track("nonexistent_file.mp4", "audio")
        assert exc.value.track == "audio"

    @patch('av.open')
    def test_permission_denied(self, mock_av_open, media_file):
        mock_av_open.side_effect = PermissionError("denied")
        with pytest.raises(DevicePermissionDeniedError):
            open_track(media_file, "video")

    @patch('av.open')
    def test_unreadable_container(self, mock_av_open, media_file):
        mock_av_open.side_effect = ValueError("invalid data")
        with pytest.raises(DeviceUnavailableError):
            open_track(media_file, "video")

    @patch('av.open')
    def test_missing_track_closes_container(self, mock_av_open, media_file):
        container = mock_container(mock_stream('video', 'h264'))
        mock_av_open.return_value = container

        with pytest.raises(DeviceUnavailableError):
            open_track(media_file, "audio")
        container.close.assert_called_once()

    @patch('av.open')
    def test_picks_stream_of_kind(self, mock_av_open, media_file):
        audio = mock_stream('audio')
        video = mock_stream('video', 'h264')
        mock_av_open.return_value = mock_container(audio, video)

        _, stream = open_track(media_file, "video")
        assert stream is video


class TestFileAudioHandle:
    """Test suite for FileAudioHandle"""

    @pytest.mark.asyncio
    @patch('av.AudioResampler')
    async def test_fixed_length_frames(self, mock_resampler):
        mock_resampler.return_value = passthrough_resampler()
        container = mock_container(decoded=[pcm(1000) for _ in range(4)])
        handle = FileAudioHandle(container, mock_stream('audio'), sample_rate=16000, frame_duration=0.1)

        frames = []
        while (frame := await handle.read()) is not None:
            frames.append(frame)

        assert [len(f.samples) for f in frames] == [1600, 1600, 800]
        assert [f.timestamp for f in frames] == [0.0, 0.1, 0.2]
        assert frames[-1].duration == pytest.approx(0.05)
        assert handle.is_live is False
        mock_resampler.assert_called_once_with(format='flt', layout='mono', rate=16000)

    @pytest.mark.asyncio
    @patch('av.AudioResampler')
    async def test_decode_failure_is_track_loss(self, mock_resampler):
        mock_resampler.return_value = passthrough_resampler()
        container = mock_container()
        container.decode.return_value = broken_decoder()
        handle = FileAudioHandle(container, mock_stream('audio'))

        assert (await handle.read()) is not None
        with pytest.raises(DeviceUnavailableError) as exc:
            await handle.read()
        assert exc.value.track == "audio"
        assert handle.is_live is False

    @pytest.mark.asyncio
    @patch('av.AudioResampler')
    async def test_closed_handle_reads_nothing(self, mock_resampler):
        mock_resampler.return_value = passthrough_resampler()
        container = mock_container(decoded=[pcm(1600)])
        handle = FileAudioHandle(container, mock_stream('audio'))
        handle.close()
        handle.close()

        assert await handle.read() is None
        container.close.assert_called_once()


class TestFileVideoHandle:
    """Test suite for FileVideoHandle"""

    @pytest.mark.asyncio
    async def test_timestamps_relative_to_first_frame(self):
        container = mock_container(decoded=[picture(2.0), picture(2.5), picture(3.0)])
        handle = FileVideoHandle(container, mock_stream('video', 'h264', rate=30))

        frames = []
        while (frame := await handle.read()) is not None:
            frames.append(frame)

        assert [f.timestamp for f in frames] == [0.0, 0.5, 1.0]
        assert [f.frame_number for f in frames] == [0, 1, 2]
        assert frames[0].image.shape == (2, 2, 3)
        assert handle.fps == 30.0

    @pytest.mark.asyncio
    async def test_missing_frame_time_uses_frame_rate(self):
        container = mock_container(decoded=[picture(None), picture(None)])
        handle = FileVideoHandle(container, mock_stream('video', 'h264', rate=None))

        first = await handle.read()
        second = await handle.read()
        assert handle.fps == 30.0
        assert second.timestamp - first.timestamp == pytest.approx(1 / 30)


    @pytest.mark.asyncio
    async def test_close_during_decode_waits_for_decoder(self):
        entered, gate = threading.Event(), threading.Event()
        container = mock_container()
        container.decode.return_value = gated_decoder(picture(0.0), entered, gate)
        handle = FileVideoHandle(container, mock_stream('video', 'h264', rate=30))

        reading = asyncio.create_task(handle.read())
        assert await asyncio.to_thread(entered.wait, 5.0)

        handle.close()
        assert handle.is_live is False
        container.close.assert_not_called()

        gate.set()
        assert await asyncio.wait_for(reading, timeout=5.0) is not None
        container.close.assert_called_once()
        assert await handle.read() is None


class TestFileCaptureProvider:
    """Test suite for FileCaptureProvider"""

    @pytest.mark.asyncio
    @patch('av.AudioResampler')
    @patch('av.open')
    async def test_request_streams(self, mock_av_open, mock_resampler, media_file):
        mock_resampler.return_value = passthrough_resampler()
        audio_container = mock_container(mock_stream('audio'), mock_stream('video', 'h264', rate=25))
        video_container = mock_container(mock_stream('audio'), mock_stream('video', 'h264', rate=25))
        mock_av_open.side_effect = [audio_container, video_container]

        provider = FileCaptureProvider(media_file, realtime=False)
        audio, video = await provider.request_streams()

        assert isinstance(audio, FileAudioHandle)
        assert isinstance(video, FileVideoHandle)
        assert audio.container is audio_container
        assert video.container is video_container
        assert video.fps == 25.0

        provider.release(audio)
        provider.release(video)
        audio_container.close.assert_called_once()
        video_container.close.assert_called_once()

    @pytest.mark.asyncio
    @patch('av.open')
    async def test_missing_video_track_releases_audio(self, mock_av_open, media_file):
        audio_container = mock_container(mock_stream('audio'))
        video_container = mock_container(mock_stream('audio'))
        mock_av_open.side_effect = [audio_container, video_container]

        with pytest.raises(DeviceUnavailableError) as exc:
            await FileCaptureProvider(media_file).request_streams()
        assert exc.value.track == "video"
        audio_container.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_file(self):
        with pytest.raises(DeviceUnavailableError):
            await FileCaptureProvider("nonexistent_file.mp4").request_streams()

    @pytest.mark.asyncio
    @patch('av.AudioResampler')
    async def test_reset_while_audio_decode_blocked(self, mock_resampler, make_controller):
        mock_resampler.return_value = passthrough_resampler()
        entered, gate = threading.Event(), threading.Event()
        container = mock_container()
        container.decode.return_value = gated_decoder(pcm(1600), entered, gate)
        audio = FileAudioHandle(container, mock_stream('audio'))
        capture = FakeCapture(audio=audio, video=ScriptedVideoHandle(make_video_frames(1.0)))
        controller = make_controller(capture=capture)

        await controller.start_session()
        await controller.start_recording()
        try:
            assert await asyncio.to_thread(entered.wait, 5.0)
            controller.reset()

            assert controller.state is SessionState.IDLE
            assert capture.released == [audio, capture.video]
            container.close.assert_not_called()
        finally:
            gate.set()

        for _ in range(100):
            if container.close.called:
                break
            await asyncio.sleep(0.01)
        container.close.assert_called_once()
