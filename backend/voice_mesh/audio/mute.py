"""값 변화 감지 모듈.

트랙의 enabled 플래그처럼 변경 이벤트가 없는 값을 주기적으로 읽어
바뀐 경우에만 콜백을 호출합니다.

Classes:
    ChangeDetector: 범용 폴링 변화 감지기
    MuteChangeDetector: 로컬 음소거 상태 감지기
"""

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Generic, Optional, TypeVar, Union

from ..shared.scheduling import PeriodicTask, call_maybe_async
from ..webrtc.config import mesh_config

if TYPE_CHECKING:
    from ..webrtc.tracks import LocalAudioStream

logger = logging.getLogger(__name__)

T = TypeVar("T")

ChangeCallback = Callable[[T], Union[Awaitable[None], None]]


class ChangeDetector(Generic[T]):
    """값을 주기적으로 읽어 변화가 있을 때만 on_change를 호출합니다.

    첫 번째 읽기는 기준값만 기록하고 콜백을 호출하지 않습니다.

    Examples:
        >>> detector = ChangeDetector("volume", 0.2, read_volume, on_volume_changed)
        >>> detector.start()
    """

    def __init__(self, name: str, interval: float, read: Callable[[], T], on_change: ChangeCallback):
        self.name = name
        self._read = read
        self._on_change = on_change
        self._task = PeriodicTask(name, interval, self.poll)
        self._value: Optional[T] = None
        self._has_baseline = False

    @property
    def running(self) -> bool:
        return self._task.running

    @property
    def value(self) -> Optional[T]:
        """마지막으로 관측한 값."""
        return self._value

    def start(self) -> bool:
        return self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    def reset(self) -> None:
        """기준값을 지웁니다. 다음 poll()이 새 기준값이 됩니다."""
        self._value = None
        self._has_baseline = False

    def set_baseline(self, value: T) -> None:
        self._value = value
        self._has_baseline = True

    async def poll(self) -> bool:
        """값을 한 번 읽습니다.

        Returns:
            bool: 변화가 감지되어 콜백을 호출했으면 True
        """
        value = self._read()
        if not self._has_baseline:
            self.set_baseline(value)
            return False
        if value == self._value:
            return False
        self._value = value
        logger.debug(f"[Audio] {self.name} 변경 감지: {value}")
        await call_maybe_async(lambda: self._on_change(value))
        return True


class MuteChangeDetector(ChangeDetector[bool]):
    """로컬 스트림의 음소거 상태 변화를 감지합니다.

    음소거 = 스트림이 없거나 활성화된 오디오 트랙이 없음.
    """

    def __init__(
        self,
        stream_provider: Callable[[], Optional["LocalAudioStream"]],
        on_change: ChangeCallback,
        interval: float = mesh_config.MUTE_POLL_INTERVAL,
    ):
        super().__init__("mute-poll", interval, lambda: is_stream_muted(stream_provider()), on_change)


def is_stream_muted(stream: Optional["LocalAudioStream"]) -> bool:
    return stream is None or not stream.has_enabled_audio_track()
