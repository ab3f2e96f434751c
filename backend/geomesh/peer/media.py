"""로컬 미디어 소스 모듈.

카메라/마이크 캡처는 외부 협력자이며, 여기서는 능력 인터페이스와 aiortc
MediaPlayer 기반 구현(파일 또는 장치)만 제공합니다.
"""
import logging
from typing import List, Optional, Protocol

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from ..shared.errors import MediaAcquisitionError

logger = logging.getLogger(__name__)

# 피어 전송에 붙일 로컬 트랙 목록
MediaStream = List[MediaStreamTrack]


class LocalMediaSource(Protocol):
    async def acquire(self) -> MediaStream:
        """로컬 미디어를 획득합니다. 실패 시 MediaAcquisitionError."""
        ...

    def stop(self) -> None: ...


class PlayerMediaSource:
    """aiortc MediaPlayer로 로컬 미디어를 제공하는 소스.

    Args:
        file (str): 미디어 파일 경로 또는 장치 이름 (예: "/dev/video0")
        format (Optional[str]): ffmpeg 입력 포맷 (예: "v4l2", "avfoundation")
        options (Optional[dict]): ffmpeg 입력 옵션

    Examples:
        >>> source = PlayerMediaSource("clip.mp4")
        >>> stream = await source.acquire()
        >>> [track.kind for track in stream]
        ['audio', 'video']
    """

    def __init__(self, file: str, format: Optional[str] = None, options: Optional[dict] = None):
        self.file = file
        self.format = format
        self.options = options or {}
        self.player: Optional[MediaPlayer] = None

    async def acquire(self) -> MediaStream:
        if self.player is None:
            try:
                self.player = MediaPlayer(self.file, format=self.format, options=self.options)
            except Exception as e:
                raise MediaAcquisitionError(f"cannot open media '{self.file}': {e}") from e

        stream = [track for track in (self.player.audio, self.player.video) if track is not None]
        if not stream:
            raise MediaAcquisitionError(f"media '{self.file}' has no audio or video track")

        logger.info(f"[Media] 로컬 미디어 획득: {self.file} ({', '.join(t.kind for t in stream)})")
        return stream

    def stop(self) -> None:
        if self.player is None:
            return
        for track in (self.player.audio, self.player.video):
            if track is not None:
                track.stop()
        self.player = None
