import unittest
from unittest.mock import Mock

from hamcrest import assert_that, calling, is_, raises

from viable.conduit.base import ReportConduit


class StubConduit(ReportConduit):
    target = 'stub'


class ReportConduitTest(unittest.TestCase):

    def test_abstract_methods(self):
        sut = ReportConduit()
        assert_that(calling(sut.close), raises(NotImplementedError))
        assert_that(calling(sut.write).with_args(b'\x00'), raises(NotImplementedError))
        assert_that(calling(sut.__getattribute__).with_args('open'), raises(NotImplementedError))
        assert_that(calling(sut.__getattribute__).with_args('target'), raises(NotImplementedError))

    def test_identity_is_unknown_by_default(self):
        sut = ReportConduit()
        assert_that(sut.product_name, is_(None))
        assert_that(sut.serial_number, is_(None))

    def test_delivers_to_subscriber(self):
        sut = ReportConduit()
        listener = Mock()
        sut.subscribe(listener)
        sut._deliver([1, 2, 3])
        listener.assert_called_once_with(b'\x01\x02\x03')

    def test_second_subscriber_is_refused(self):
        sut = ReportConduit()
        sut.subscribe(Mock())
        assert_that(calling(sut.subscribe).with_args(Mock()), raises(ValueError))

    def test_resubscribing_after_unsubscribe(self):
        sut = ReportConduit()
        sut.subscribe(Mock())
        sut.unsubscribe()
        listener = Mock()
        sut.subscribe(listener)
        sut._deliver(b'\x01')
        listener.assert_called_once_with(b'\x01')

    def test_report_without_subscriber_is_dropped(self):
        sut = StubConduit()
        sut._deliver(b'\x01')

    def test_lost_fires_disconnected_once(self):
        sut = StubConduit()
        handler = Mock()
        sut.disconnected += handler
        cause = OSError('gone')
        sut._lost(cause)
        sut._lost(OSError('again'))
        handler.assert_called_once_with(cause)
