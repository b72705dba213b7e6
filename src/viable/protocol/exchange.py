"""
Serializes request/response exchanges over one conduit.

The wire carries no request sequence number, so a response can only be told apart from the response
to another request by making sure there is never more than one request outstanding. Operations are
queued on a single worker thread and each runs to completion (result, error or timeout) before the
next one starts. While an operation waits for its response it occupies the one PendingRequest slot,
and inbound reports are offered to it.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

from viable.conduit.base import ReportConduit
from viable.errors import CommandTimeout, DeviceConnectionError
from viable.protocol.futures import FutureValue
from viable.support.events import EventSource

logger = logging.getLogger(__name__)


class PendingRequest:
    """
    A waiter for the first inbound report accepted by a predicate.

    :param matches: predicate called with each offered report. If it raises, the request fails with that error.
    :param timeout: seconds to wait for a match
    :param max_discards: when given, the request times out once this many reports have been rejected
    :param extend_on_discard: restart the timeout each time a report is rejected, so that the timeout
        bounds the silence between reports rather than the whole wait
    """

    def __init__(self, matches, timeout, max_discards=None, extend_on_discard=False, name='request'):
        self.matches = matches
        self.timeout = timeout
        self.max_discards = max_discards
        self.extend_on_discard = extend_on_discard
        self.name = name
        self.future = FutureValue()
        self.discarded = 0
        self._activity = False
        self._lock = threading.Lock()

    def offer(self, report) -> bool:
        """
        :return: True if the report settled this request
        """
        with self._lock:
            if self.future.done():
                return False
            try:
                accepted = self.matches(report)
            except Exception as e:
                return self.future.settle(e)
            if accepted:
                return self.future.settle(report)
            self.discarded += 1
            self._activity = True
            if self.max_discards is not None and self.discarded >= self.max_discards:
                self.future.settle(CommandTimeout("%s: no matching report among %d received" %
                                                  (self.name, self.discarded)))
            return False

    def reject(self, error) -> bool:
        return self.future.settle(error)

    def wait(self):
        """ blocks until the request is settled or times out.
        :return: the matching report
        :raises CommandTimeout: when no match arrives in time
        """
        while True:
            try:
                return self.future.value(self.timeout)
            except FutureTimeout:
                with self._lock:
                    extend = self.extend_on_discard and self._activity
                    self._activity = False
                if not extend:
                    break
        self.reject(CommandTimeout("%s: no response within %.2fs" % (self.name, self.timeout)))
        return self.future.value(0)


class ReportExchanger:
    """
    Owns the FIFO of operations for one conduit, and the slot for the request currently awaiting a response.

    Reports that arrive while nothing is pending are published to the `unsolicited` event.
    """

    def __init__(self, conduit: ReportConduit, name='viable-exchange'):
        self.conduit = conduit
        self.unsolicited = EventSource()
        self._pending = None
        self._pending_lock = threading.Lock()
        self._queued = set()
        self._queue_lock = threading.Lock()
        self._closed_error = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        conduit.subscribe(self._report_received)

    @property
    def closed(self):
        return self._closed_error is not None

    @property
    def pending(self):
        return self._pending

    def submit(self, fn, *args, **kwargs) -> FutureValue:
        """
        Queues fn to run on the worker after all previously submitted operations have finished.
        :return: a future for the value returned, or the exception raised, by fn
        """
        future = FutureValue()
        with self._queue_lock:
            if self._closed_error is not None:
                future.set_exception(DeviceConnectionError(str(self._closed_error)))
                return future
            self._queued.add(future)
            self._executor.submit(self._run, future, fn, args, kwargs)
        return future

    def _run(self, future, fn, args, kwargs):
        try:
            if future.done():
                return
            try:
                value = fn(*args, **kwargs)
            except Exception as e:
                value = e
            future.settle(value)
        finally:
            with self._queue_lock:
                self._queued.discard(future)

    def _install(self, pending: PendingRequest):
        with self._pending_lock:
            if self._pending is not None:
                raise AssertionError("cannot install %s while %s is pending" % (pending.name, self._pending.name))
            self._pending = pending

    def _release(self, pending: PendingRequest):
        with self._pending_lock:
            if self._pending is pending:
                self._pending = None

    def transact(self, report: bytes, pending: PendingRequest):
        """
        Writes a report and waits for the pending request to be settled by an inbound report.
        Must be called from an operation running on the worker.
        :return: the matching report
        """
        if self._closed_error is not None:
            raise DeviceConnectionError(str(self._closed_error))
        self._install(pending)
        try:
            logger.debug("sending %s: %s", pending.name, bytes(report).hex())
            self.conduit.write(report)
            return pending.wait()
        finally:
            self._release(pending)

    def _report_received(self, report):
        pending = self._pending
        if pending is not None:
            if pending.offer(report):
                return
            if not pending.future.done():
                logger.debug("%s: discarded report %s", pending.name, report[:8].hex())
                return
        self.unsolicited.fire(report)

    def abort(self, error):
        """
        Fails the operation in progress and everything queued behind it with the given error, and stops
        accepting new operations. Calling abort again has no effect.
        """
        with self._queue_lock:
            if self._closed_error is not None:
                return
            self._closed_error = error
            queued = list(self._queued)
        pending = self._pending
        if pending is not None:
            pending.reject(error)
        for future in queued:
            future.settle(error)
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.conduit.unsubscribe()
        if queued:
            logger.info("aborted %d queued operations: %s", len(queued), error)
