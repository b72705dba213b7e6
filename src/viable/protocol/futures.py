"""
Futures and a background loop used to turn the report stream into request/response calls.
"""
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future

logger = logging.getLogger(__name__)


class FutureValue(Future):
    """ describes a value that may have not yet been computed. Callers can check if the value has arrived, or chose to
        wait until the value has arrived.
        If an exception is encountered computing the value, it is raised from value()."""

    def __init__(self):
        super().__init__()
        self._settle_lock = threading.Lock()

    @classmethod
    def resolved(cls, value):
        """ a future that already holds the given value """
        future = cls()
        future.set_result(value)
        return future

    def set_result_or_exception(self, value):
        """sets the result, or the exception when the value is an exception. """
        if isinstance(value, BaseException):
            self.set_exception(value)
        else:
            self.set_result(value)

    def settle(self, value):
        """ like set_result_or_exception, but a no-op if the future is already done.
        :return: True if this call settled the future.
        """
        with self._settle_lock:
            if self.done():
                return False
            self.set_result_or_exception(value)
            return True

    def value(self, timeout=None):
        """ blocks until the value is available and returns it, or raises the exception it was settled with. """
        return self.result(timeout)


class AsyncLoop:
    """ Continually runs a given function on a background thread.
        Exceptions are logged and posted to a given handler
        The background thread is registered as a daemon.
    """

    def __init__(self, fn: Callable=None, args=(), log=logger, name=None):
        """
        :param fn the function to run
        :param args arguments to pass to fn
        """
        self.fn = fn
        self.args = args
        self.name = name
        self.stop_event = threading.Event()
        self.background_thread = None
        self.logger = log

    def start(self):
        if self.background_thread is None:
            self.stop_event.clear()
            t = threading.Thread(target=self._run, name=self.name)
            t.daemon = True
            self.background_thread = t
            t.start()

    def exception_handler(self, e):
        self.logger.exception(e)

    def _run(self):
        """ The processing loop for the background thread.
             Invokes the callable for as long as the stop signal is not received.
        """
        self._do(self.startup)
        while self.running():
            self._do(self.loop)
        self._do(self.shutdown)
        logger.debug("background thread exiting")

    def _do(self, callme):
        """ runs a function and captures any exceptions """
        try:
            callme()
        except Exception as e:
            time.sleep(0)
            self.exception_handler(e)

    def startup(self):
        """ template method called when the thread starts"""
        pass

    def loop(self):
        self.fn(*self.args)

    def shutdown(self):
        """ template method called when the thread exits """
        pass

    def running(self):
        return not self.stop_event.is_set()

    def stop(self):
        """ signals the loop to stop and waits for it, unless called from the loop itself. """
        self.stop_event.set()
        thread = self.background_thread
        self.background_thread = None
        if thread and thread is not threading.current_thread():
            thread.join()
