"""
Shutdown token owned by the process entry point.

The election loop and long-running leader work observe a ShutdownSignal
instead of registering OS signal handlers themselves, so they can be
driven from tests without real signals.
"""

import asyncio
import signal
from typing import Optional, Sequence

from lector.utils.logging import get_logger

logger = get_logger(__name__)

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownSignal:
    """
    Cooperative cancellation token.
    
    Cancelling is idempotent: the first call wins and later calls are
    ignored.
    """
    
    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._signals: Sequence[int] = ()
    
    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._event.is_set()
    
    @property
    def reason(self) -> Optional[str]:
        """Why the token was cancelled, if it was."""
        return self._reason
    
    def cancel(self, reason: str = "cancelled") -> bool:
        """
        Request cancellation.
        
        Args:
            reason: Short description for logs
        
        Returns:
            True if this call cancelled the token, False if already cancelled
        """
        if self._event.is_set():
            return False
        
        self._reason = reason
        self._event.set()
        
        logger.debug("Shutdown requested", reason=reason)
        
        return True
    
    async def wait(self) -> None:
        """Block until cancelled."""
        await self._event.wait()
    
    async def sleep(self, seconds: float) -> bool:
        """
        Sleep unless cancelled first.
        
        Args:
            seconds: Sleep duration
        
        Returns:
            True if the token was cancelled during (or before) the sleep
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
    
    def install(
        self,
        loop: asyncio.AbstractEventLoop,
        signals: Sequence[int] = TERMINATION_SIGNALS,
    ) -> None:
        """
        Cancel this token on process termination signals.
        
        Args:
            loop: Event loop that receives the signals
            signals: Signals to listen for
        """
        self._loop = loop
        self._signals = tuple(signals)
        
        for sig in self._signals:
            loop.add_signal_handler(sig, self._on_signal, sig)
    
    def uninstall(self) -> None:
        """Remove signal handlers registered by install()."""
        if self._loop is None:
            return
        
        for sig in self._signals:
            self._loop.remove_signal_handler(sig)
        
        self._loop = None
        self._signals = ()
    
    def _on_signal(self, sig: int) -> None:
        """Handle a termination signal."""
        if self.cancel(reason=signal.Signals(sig).name):
            logger.info(
                "Received termination, signaling shutdown",
                signal=signal.Signals(sig).name,
            )
        
        self.uninstall()
