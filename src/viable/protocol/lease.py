"""
Acquires and renews the client id that addresses this client on the shared HID channel.

A lease is acquired with a bootstrap exchange: a request carrying client id 0 and a random nonce, answered
by a response that echoes the nonce along with a new client id and its time to live. Other clients may be
bootstrapping at the same time, so responses that do not echo our nonce are skipped. The lease is renewed,
with a fresh bootstrap, once renewal_fraction of its ttl has passed.
"""
import logging
import secrets
import threading
import time
from enum import Enum

from viable import settings
from viable.errors import BootstrapFailure, CommandTimeout
from viable.protocol.exchange import PendingRequest, ReportExchanger
from viable.protocol.futures import FutureValue
from viable.protocol.wrapper import NONCE_SIZE, NO_CLIENT, bootstrap_matcher, build_bootstrap_request, \
    parse_bootstrap_response
from viable.support.events import EventSource

logger = logging.getLogger(__name__)


class LeaseState(Enum):
    UNLEASED = 'unleased'
    BOOTSTRAPPING = 'bootstrapping'
    LEASED = 'leased'
    RENEWING = 'renewing'
    EXPIRED = 'expired'


class ClientLease:
    """
    a client id granted by the device. It is renewed from expiry and stops being honoured at deadline,
    both clock() readings.
    """

    def __init__(self, client_id, ttl, expiry, deadline=None):
        self.client_id = client_id
        self.ttl = ttl
        self.expiry = expiry
        self.deadline = expiry if deadline is None else deadline

    def expired(self, now):
        return now >= self.expiry

    def lapsed(self, now):
        return now >= self.deadline

    def __repr__(self):
        return "ClientLease(client_id=0x%08x, ttl=%d)" % (self.client_id, self.ttl)


def random_nonce():
    return secrets.token_bytes(NONCE_SIZE)


class ClientLeaseManager:
    """
    Holds the lease for one device.

    ensure_lease() returns the current lease when it is still valid, otherwise a bootstrap is queued on the
    exchanger. At most one bootstrap is queued or running at a time; callers arriving meanwhile share it.
    The renewal timer uses the same guard, so a renewal never overlaps a bootstrap.

    Events:
    - acquired(lease): a bootstrap or renewal succeeded
    - renewal_failed(error): a renewal failed. The lease is left expired and the next ensure_lease() retries.
    """

    def __init__(self, exchanger: ReportExchanger, nonce_source=random_nonce, clock=time.monotonic,
                 timer_factory=threading.Timer, attempts=None, reads=None, read_timeout=None, renewal_fraction=None):
        self.exchanger = exchanger
        self.nonce_source = nonce_source
        self.clock = clock
        self.timer_factory = timer_factory
        self.attempts = settings.bootstrap_attempts if attempts is None else attempts
        self.reads = settings.bootstrap_reads if reads is None else reads
        self.read_timeout = settings.bootstrap_read_timeout if read_timeout is None else read_timeout
        self.renewal_fraction = settings.renewal_fraction if renewal_fraction is None else renewal_fraction
        self.acquired = EventSource()
        self.renewal_failed = EventSource()
        self.state = LeaseState.UNLEASED
        self.lease = None
        self.bootstraps = 0
        self._bootstrap = None
        self._renewal = None
        self._lock = threading.RLock()

    @property
    def client_id(self):
        """ the id of the current lease, or 0 when there is none """
        lease = self.lease
        return lease.client_id if lease is not None else NO_CLIENT

    def ensure_lease(self) -> FutureValue:
        """
        :return: a future for a valid ClientLease. It fails with BootstrapFailure when no lease could be acquired.
        While a renewal is in flight the current lease is returned until its full ttl has passed.
        """
        with self._lock:
            if self._bootstrap is not None:
                # the lease being renewed still holds until its deadline
                if self.state is LeaseState.RENEWING and self.lease is not None \
                        and not self.lease.lapsed(self.clock()):
                    return FutureValue.resolved(self.lease)
                return self._bootstrap
            if self.state is LeaseState.LEASED:
                if not self.lease.expired(self.clock()):
                    return FutureValue.resolved(self.lease)
                self.state = LeaseState.EXPIRED
            return self._start_bootstrap(LeaseState.BOOTSTRAPPING)

    def _start_bootstrap(self, state):
        self.state = state
        future = self.exchanger.submit(self._bootstrap_exchange)
        self._bootstrap = future
        future.add_done_callback(self._bootstrap_done)
        return future

    def _bootstrap_exchange(self):
        """ runs on the exchanger's worker """
        self.bootstraps += 1
        nonce = bytes(self.nonce_source())
        request = build_bootstrap_request(nonce)
        matcher = bootstrap_matcher(nonce)
        for attempt in range(1, self.attempts + 1):
            pending = PendingRequest(matcher, self.read_timeout, max_discards=self.reads,
                                     extend_on_discard=True, name='bootstrap')
            try:
                report = self.exchanger.transact(request, pending)
            except CommandTimeout as e:
                logger.info("bootstrap attempt %d of %d unanswered (%s), resending", attempt, self.attempts, e)
                continue
            client_id, ttl = parse_bootstrap_response(report)
            now = self.clock()
            return ClientLease(client_id, ttl, now + ttl * self.renewal_fraction, now + ttl)
        raise BootstrapFailure("no bootstrap response after %d attempts" % self.attempts)

    def _bootstrap_done(self, future):
        with self._lock:
            if self._bootstrap is not future:
                # reset while the bootstrap was in flight
                return
            self._bootstrap = None
            renewing = self.state is LeaseState.RENEWING
            error = future.exception()
            if error is None:
                lease = future.result()
                self.lease = lease
                self.state = LeaseState.LEASED
                self._schedule_renewal(lease)
            else:
                self.lease = None
                self.state = LeaseState.EXPIRED if renewing else LeaseState.UNLEASED
        if error is None:
            logger.info("acquired client id 0x%08x, ttl %ds", lease.client_id, lease.ttl)
            self.acquired.fire(lease)
        elif renewing:
            logger.error("lease renewal failed: %s", error)
            self.renewal_failed.fire(error)
        else:
            logger.warning("bootstrap failed: %s", error)

    def _schedule_renewal(self, lease):
        self._cancel_renewal()
        delay = max(0.0, lease.expiry - self.clock())
        timer = self.timer_factory(delay, self._renew, args=(lease,))
        timer.daemon = True
        self._renewal = timer
        timer.start()

    def _cancel_renewal(self):
        timer, self._renewal = self._renewal, None
        if timer is not None:
            timer.cancel()

    def _renew(self, lease):
        with self._lock:
            if self.lease is not lease or self._bootstrap is not None:
                return
            self._renewal = None
            logger.info("renewing client id 0x%08x", lease.client_id)
            self._start_bootstrap(LeaseState.RENEWING)

    def reset(self):
        """ forgets the lease and cancels renewal, as when the device is closed or lost. """
        with self._lock:
            self._cancel_renewal()
            self._bootstrap = None
            self.lease = None
            self.state = LeaseState.UNLEASED
