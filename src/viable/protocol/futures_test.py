import sys
import threading
import time
import unittest
from unittest.mock import Mock, call, patch

import timeout_decorator
from hamcrest import assert_that, calling, equal_to, instance_of, is_, is_not, raises

from viable.protocol.futures import AsyncLoop, FutureValue


def debug_timeout(value):
    """
    Replaces the timeout value with a very large one if the tests are running under a debugger.
    This prevents the main thread from throwing an exception and exiting when the test times out
    due to a breakpoint.
    """
    return value if sys.gettrace() is None else 100000


class NastyException(Exception):
    """ really nasty """


class FutureValueTestCase(unittest.TestCase):

    def test_value_returns_result(self):
        f = FutureValue()
        f.set_result(123)
        assert_that(f.value(), equal_to(123))

    def test_resolved(self):
        assert_that(FutureValue.resolved(7).value(0), is_(7))

    def test_exception_is_raised_from_value(self):
        f = FutureValue()
        f.set_exception(NastyException('the eggs are off'))
        assert_that(calling(f.value), raises(NastyException))

    def test_set_result_or_exception_with_non_exception_sets_result(self):
        sut = FutureValue()
        sut.set_result_or_exception(1)
        self.assertEqual(sut.result(), 1)

    def test_set_result_or_exception_with_exception_raises_exception(self):
        sut = FutureValue()
        sut.set_result_or_exception(NastyException())
        assert_that(calling(sut.result), raises(NastyException))

    def test_settle_only_first_value_wins(self):
        sut = FutureValue()
        assert_that(sut.settle(1), is_(True))
        assert_that(sut.settle(NastyException()), is_(False))
        assert_that(sut.value(), is_(1))


class AsyncLoopTest(unittest.TestCase):
    @timeout_decorator.timeout(debug_timeout(2))
    def test_real_thread(self):
        thread = None
        sut = None
        loop_thread = None

        def fn():
            nonlocal thread, loop_thread
            thread = threading.current_thread()
            loop_thread = sut.background_thread
        loop = Mock(side_effect=fn)
        sut = AsyncLoop(loop, name="reader")
        sut.startup = Mock()
        sut.shutdown = Mock()
        sut.start()
        while not loop.call_count:
            time.sleep(0)

        assert_that(thread, is_not(None))
        assert_that(thread, is_(loop_thread))
        assert_that(thread.name, is_("reader"))
        assert_that(sut.running(), is_(True))
        sut.stop()
        assert_that(sut.running(), is_(False))
        assert_that(sut.background_thread, is_(None))
        sut.shutdown.assert_called_once()
        sut.startup.assert_called_once()

    @timeout_decorator.timeout(debug_timeout(1))
    def test_run_invokes_startup_shutdown_around_loop(self):
        running = Mock(return_value=True)

        def fn():
            if running.call_count > 1:
                running.return_value = False

        loop = Mock(side_effect=fn)
        sut = AsyncLoop(loop)
        sut.shutdown = Mock()
        sut.startup = Mock()
        sut.running = running
        manager = Mock()
        manager.attach_mock(sut.startup, 'startup')
        manager.attach_mock(sut.shutdown, 'shutdown')
        manager.attach_mock(loop, 'loop')
        sut._run()
        self.assertEqual(manager.mock_calls, [call.startup(), call.loop(), call.loop(), call.shutdown()])

    @timeout_decorator.timeout(debug_timeout(1))
    def test_an_exception_does_not_stop_the_loop(self):
        running = Mock(return_value=True)

        def fn():
            if running.call_count == 10:
                running.return_value = False
            raise NastyException()

        loop = Mock(side_effect=fn)
        sut = AsyncLoop(loop)
        sut.running = running
        sut.exception_handler = Mock()
        sut._run()
        self.assertEqual(loop.call_count, 10)
        self.assertEqual(sut.exception_handler.call_count, 10)

    @patch('threading.Thread')
    def test_starting_an_already_started_loop(self, thread):
        sut = AsyncLoop([])
        the_thread = Mock()
        thread.return_value = the_thread
        sut.start()
        thread.assert_called_once()
        assert_that(sut.background_thread, is_(the_thread))
        assert_that(sut.stop_event, is_(instance_of(threading.Event)))
        assert_that(the_thread.daemon, is_(True))
        thread.reset_mock()
        sut.start()
        thread.assert_not_called()

    def test_stop_when_not_started_is_harmless(self):
        sut = AsyncLoop()
        sut.stop()

    def test_default_exception_handler_logs_exception(self):
        sut = AsyncLoop(None)
        sut.logger = Mock()
        e = NastyException()
        sut.exception_handler(e)
        sut.logger.exception.assert_called_once_with(e)

    @timeout_decorator.timeout(debug_timeout(2))
    def test_calling_stop_on_loop(self):
        sut = None

        def stop():
            sut.stop()

        sut = AsyncLoop(stop)
        sut.start()
        while sut.background_thread:  # pragma no cover - non-deterministic
            time.sleep(0.001)
        sut.stop()


if __name__ == '__main__':  # pragma no cover
    unittest.main()
