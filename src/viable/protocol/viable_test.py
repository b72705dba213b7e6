import threading
import unittest
from unittest.mock import Mock

import timeout_decorator
from hamcrest import assert_that, calling, contains_exactly, has_properties, is_, raises

from viable.conduit.loopback import LoopbackConduit
from viable.errors import BootstrapFailure, CommandTimeout, DecodeError, DeviceConnectionError, ProtocolError
from viable.protocol.decoder import FixedWidthArray, PackedStruct, ScalarByOffset
from viable.protocol.exchange import ReportExchanger
from viable.protocol.futures_test import debug_timeout
from viable.protocol.lease import ClientLeaseManager
from viable.protocol.simulator import SimulatedFirmware
from viable.protocol.viable import ExtensionCommands, LegacyCommands, ViableProtocol, index_echo
from viable.protocol.wrapper import SubProtocol, build_packet


class ViableProtocolTestCase(unittest.TestCase):

    def setUp(self):
        self.firmware = SimulatedFirmware(first_client_id=7, ttl=120)
        self.conduit = LoopbackConduit(self.firmware)
        self.exchanger = ReportExchanger(self.conduit)
        self.lease = ClientLeaseManager(self.exchanger, nonce_source=lambda: bytes([0xAA] * 20),
                                        timer_factory=Mock(), read_timeout=0.05, attempts=2)
        self.sut = ViableProtocol(self.exchanger, self.lease, timeout=0.2)

    def tearDown(self):
        self.exchanger.abort(DeviceConnectionError('test over'))


class SendCommandTest(ViableProtocolTestCase):

    def test_first_command_bootstraps(self):
        self.sut.send_legacy(LegacyCommands.get_protocol_version).value(1)
        assert_that(self.firmware.bootstraps, is_(1))
        assert_that(self.conduit.written[1][:7], is_(b'\xdd\x07\x00\x00\x00\xfe\x01'))

    def test_legacy_command_with_args(self):
        self.sut.send_legacy(LegacyCommands.get_keycode, [1, 2, 3]).value(1)
        assert_that(self.firmware.commands(SubProtocol.legacy)[0][:4], is_(b'\x04\x01\x02\x03'))

    def test_extension_command_tag(self):
        self.sut.send_extension(ExtensionCommands.get_info).value(1)
        assert_that(self.conduit.written[-1][5], is_(SubProtocol.extension))

    def test_decodes_response(self):
        self.firmware.handlers[(SubProtocol.legacy, 0x01)] = lambda payload: b'\x01\x00\x0c'
        value = self.sut.send_legacy(0x01, decoder=ScalarByOffset(16, offset=1, big_endian=True)).value(1)
        assert_that(value, is_(12))

    def test_raw_payload_by_default(self):
        value = self.sut.send_legacy(0x01, [0x22]).value(1)
        assert_that(value, is_(b'\x01\x22' + bytes(24)))

    def test_payload_too_large(self):
        assert_that(calling(self.sut.send_legacy).with_args(0x01, [bytes(26)]), raises(ValueError))
        assert_that(self.firmware.bootstraps, is_(0))

    def test_extension_error_is_protocol_error(self):
        self.firmware.errors[(SubProtocol.extension, 0x03)] = 2
        decoder = Mock()
        future = self.sut.send_extension(0x03, decoder=decoder)
        assert_that(calling(future.value).with_args(1), raises(ProtocolError, "error code 2"))
        assert_that(future.exception(), has_properties(code=2, command=0x03))
        decoder.decode.assert_not_called()

    def test_legacy_0xff_is_data(self):
        self.firmware.handlers[(SubProtocol.legacy, 0x05)] = lambda payload: b'\xff\x02'
        assert_that(self.sut.send_legacy(0x05).value(1)[:2], is_(b'\xff\x02'))

    def test_error_packet_bypasses_validator(self):
        self.firmware.errors[(SubProtocol.extension, 0x03)] = 5
        future = self.sut.send_extension(0x03, validator=lambda payload: False)
        assert_that(calling(future.value).with_args(1), raises(ProtocolError))

    def test_decode_error(self):
        future = self.sut.send_legacy(0x01, decoder=PackedStruct('QQQQ'))
        assert_that(calling(future.value).with_args(1), raises(DecodeError))

    def test_timeout(self):
        self.firmware.silent.add((SubProtocol.legacy, 0x09))
        future = self.sut.send_legacy(0x09)
        assert_that(calling(future.value).with_args(1), raises(CommandTimeout))

    def test_bootstrap_failure_fails_command(self):
        self.firmware.bootstrap_error = 3
        future = self.sut.send_legacy(0x01)
        assert_that(calling(future.value).with_args(1), raises(BootstrapFailure))
        assert_that(self.firmware.commands(), is_([]))

    def test_command_during_failed_renewal_keeps_client_id(self):
        self.sut.send_legacy(LegacyCommands.get_protocol_version).value(1)
        args, kwargs = self.lease.timer_factory.call_args
        gate = threading.Event()
        self.exchanger.submit(gate.wait, 1)
        self.firmware.bootstrap_error = 1
        args[1](*kwargs['args'])
        f = self.sut.send_legacy(LegacyCommands.get_protocol_version)
        gate.set()
        f.value(1)
        assert_that(self.conduit.written[-1][1:5], is_(bytes([0x07, 0x00, 0x00, 0x00])))
        assert_that(self.firmware.bootstraps, is_(2))

    def test_validator_skips_mismatched_response(self):
        self.firmware.handlers[(SubProtocol.extension, 0x01)] = lambda payload: payload
        self.firmware.noise = [build_packet(7, SubProtocol.extension, b'\x01\x05')]
        value = self.sut.send_extension(0x01, [3], validator=index_echo(3)).value(1)
        assert_that(value[:2], is_(b'\x01\x03'))

    def test_reports_for_other_clients_are_skipped(self):
        self.firmware.noise = [build_packet(8, SubProtocol.legacy, b'\x09'), b'\x01' * 32]
        assert_that(self.sut.send_legacy(0x01).value(1)[0], is_(0x01))


class OrderingTest(ViableProtocolTestCase):

    @timeout_decorator.timeout(debug_timeout(5))
    def test_commands_resolve_in_order(self):
        completed = []
        lock = threading.Lock()
        gate = threading.Event()
        self.sut.send_legacy(0x01).value(1)
        self.exchanger.submit(gate.wait, 1)

        def record(name):
            def done(future):
                with lock:
                    completed.append(name)
            return done
        futures = []
        for name, command in (('A', 0x0A), ('B', 0x0B), ('C', 0x0C)):
            future = self.sut.send_legacy(command)
            future.add_done_callback(record(name))
            futures.append(future)
        gate.set()
        values = [f.value(1)[0] for f in reversed(futures)]
        assert_that(values, contains_exactly(0x0C, 0x0B, 0x0A))
        assert_that(completed, contains_exactly('A', 'B', 'C'))

    def test_failure_does_not_block_queue(self):
        self.firmware.silent.add((SubProtocol.legacy, 0x0A))
        self.firmware.errors[(SubProtocol.extension, 0x0B)] = 1
        a = self.sut.send_legacy(0x0A)
        b = self.sut.send_extension(0x0B)
        c = self.sut.send_legacy(0x0C)
        assert_that(c.value(2)[0], is_(0x0C))
        assert_that(calling(a.value).with_args(0), raises(CommandTimeout))
        assert_that(calling(b.value).with_args(0), raises(ProtocolError))


class LateReplyTest(ViableProtocolTestCase):

    def test_late_reply_is_counted(self):
        self.sut.send_legacy(0x01).value(1)
        self.conduit.inject(build_packet(7, SubProtocol.legacy, b'\x09'))
        assert_that(self.sut.late_replies, is_(1))

    def test_other_clients_are_not_late_replies(self):
        self.sut.send_legacy(0x01).value(1)
        self.conduit.inject(build_packet(8, SubProtocol.legacy, b'\x09'))
        self.conduit.inject(b'\x00' * 32)
        assert_that(self.sut.late_replies, is_(0))


class EntriesTest(ViableProtocolTestCase):

    def test_get_entries(self):
        self.firmware.handlers[(SubProtocol.extension, ExtensionCommands.combo_get)] = \
            lambda payload: payload[:2] + bytes([payload[1] * 2, 0, 1, 0])
        entries = self.sut.get_entries(ExtensionCommands.combo_get, 3, FixedWidthArray(16, skip=2), echo_index=True)
        assert_that([e[:2] for e in entries], contains_exactly([0, 1], [2, 1], [4, 1]))
        assert_that([p[1] for p in self.firmware.commands(SubProtocol.extension)], contains_exactly(0, 1, 2))

    def test_get_entries_default_decoder(self):
        entries = self.sut.get_entries(ExtensionCommands.leader_get, 2)
        assert_that([len(e) for e in entries], contains_exactly(24, 24))
