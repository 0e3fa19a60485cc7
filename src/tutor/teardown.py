"""
Ordered, idempotent release of everything a session acquired.

The same release path runs for an explicit stop, a channel error, a device
failure and client shutdown. Every step checks what is still held before
acting, so running it twice is harmless.
"""

import asyncio

from logger import get_logger, log_exception

logger = get_logger("teardown")


class ResourceManager:
    """Releases a session's connection, microphone and speaker in a fixed order.

    1. mark the session released so late callbacks are discarded
    2. cancel a pending connect and close the channel
    3. detach the capture sink
    4. stop the input stream
    5. close the input device
    6. stop every active playback unit
    7. close the output device
    """

    async def release(self, session):
        """Release ``session``. Safe to call repeatedly."""
        if not session.released:
            session.released = True
            logger.info(f"Releasing session {session.session_id}")

        await self._step("closing channel", self._close_connection(session))
        await self._step("detaching capture", self._detach_capture(session))
        await self._step("stopping input stream", self._stop_input(session))
        await self._step("closing input device", self._close_input(session))
        await self._step("stopping playback", self._stop_playback(session))
        await self._step("closing output device", self._close_output(session))
        session.pending.clear()

    async def _step(self, description, coro):
        # A failing step is logged and the remaining steps still run
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_exception(e, f"while {description}")

    async def _close_connection(self, session):
        task, session.connect_task = session.connect_task, None
        if task is not None:
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            elif not task.cancelled() and task.exception() is None:
                opened = task.result()
                if opened is not None and session.channel is None:
                    session.channel = opened

        receiver, session.receive_task = session.receive_task, None
        if receiver is not None and not receiver.done():
            receiver.cancel()
            await asyncio.gather(receiver, return_exceptions=True)

        channel, session.channel = session.channel, None
        if channel is not None:
            await channel.close()

    async def _detach_capture(self, session):
        if session.capture is not None:
            session.capture.detach()

    async def _stop_input(self, session):
        capture = session.capture
        if capture is not None and capture.is_running:
            await _run_blocking(capture.stop_stream)

    async def _close_input(self, session):
        capture, session.capture = session.capture, None
        if capture is not None and not capture.closed:
            await _run_blocking(capture.close)

    async def _stop_playback(self, session):
        scheduler, session.scheduler = session.scheduler, None
        if scheduler is not None:
            stopped = scheduler.stop_all()
            if stopped:
                logger.debug(f"Stopped {stopped} pending playback unit(s)")

    async def _close_output(self, session):
        output, session.output = session.output, None
        if output is not None and not output.closed:
            await _run_blocking(output.close)


async def _run_blocking(fn):
    """Run a blocking device call off the event loop thread."""
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, fn)
