"""주기 작업 / 지연 작업 스케줄링 모듈.

헬스 체크, 하트비트, 오디오 레벨 샘플링, 음소거 폴링처럼 일정 간격으로
반복되는 작업과, 재연결 예약이나 유예 타이머처럼 한 번만 실행되는 지연
작업을 asyncio 태스크로 관리합니다.

Classes:
    PeriodicTask: 고정 주기로 콜백을 실행하는 반복 작업
    DelayedTask: 지정 시간 후 한 번 실행되는 취소 가능한 작업

Note:
    - 콜백에서 발생한 예외는 로그로 남기고 루프는 계속 실행됨
    - asyncio.CancelledError는 항상 전파됨
    - stop()/cancel()은 태스크 종료까지 기다린 후 반환
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[Awaitable[None], None]]


async def call_maybe_async(callback: Callback) -> None:
    """콜백을 호출하고, 코루틴을 반환하면 await 합니다."""
    result = callback()
    if asyncio.iscoroutine(result):
        await result


class PeriodicTask:
    """고정 주기로 콜백을 반복 실행하는 작업.

    Attributes:
        name (str): 로그에 표시할 작업 이름
        interval (float): 실행 간격 (초)

    Examples:
        >>> task = PeriodicTask("heartbeat", 30.0, publisher.publish_once)
        >>> task.start()
        >>> await task.stop()
    """

    def __init__(self, name: str, interval: float, callback: Callback):
        if interval <= 0:
            raise ValueError(f"interval must be positive: {name}={interval}")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        """작업 실행 여부."""
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """작업을 시작합니다. 이미 실행 중이면 아무것도 하지 않습니다.

        Returns:
            bool: 새로 시작했으면 True
        """
        if self.running:
            return False
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.debug(f"[Scheduler] {self.name} 시작 (간격 {self.interval}s)")
        return True

    async def stop(self) -> None:
        """작업을 중지하고 태스크가 끝날 때까지 기다립니다."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"[Scheduler] {self.name} 중지")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await call_maybe_async(self._callback)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Scheduler] {self.name} 실행 오류: {type(e).__name__}: {e}", exc_info=True)


class DelayedTask:
    """지정 시간 후 한 번 실행되는 취소 가능한 작업.

    Attributes:
        name (str): 로그에 표시할 작업 이름
        delay (float): 실행까지 대기 시간 (초)

    Note:
        - 콜백이 실행되기 시작한 뒤에는 cancel()이 콜백 내부의 await 지점에서 중단시킴
        - 콜백은 실행 시점에 상태를 다시 검증해야 함 (대기 중 상태가 바뀔 수 있음)
    """

    def __init__(self, name: str, delay: float, callback: Callback):
        self.name = name
        self.delay = delay
        self._callback = callback
        self._fired = False
        self._task: asyncio.Task = asyncio.create_task(self._run(), name=f"delayed:{name}")

    @property
    def pending(self) -> bool:
        """아직 실행 전이고 취소되지 않았는지 여부."""
        return not self._fired and not self._task.done()

    @property
    def fired(self) -> bool:
        """콜백 실행이 시작되었는지 여부."""
        return self._fired

    def cancel(self) -> bool:
        """대기 중인 작업을 취소합니다.

        Returns:
            bool: 실제로 취소했으면 True (이미 실행/완료된 경우 False)
        """
        if not self.pending:
            return False
        self._task.cancel()
        return True

    async def wait(self) -> None:
        """작업이 끝날 때까지 기다립니다 (취소된 경우 포함)."""
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        self._fired = True
        try:
            await call_maybe_async(self._callback)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Scheduler] {self.name} 실행 오류: {type(e).__name__}: {e}", exc_info=True)
