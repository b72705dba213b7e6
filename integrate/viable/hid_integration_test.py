"""
Tests against an attached keyboard. Set vendor_id and product_id (as hex strings) in keyboard_test.cfg
beside this file, or in ~/.viable/keyboard_test.cfg, under a [keyboard] section.
"""
import os
import sys
import unittest

from hamcrest import assert_that, greater_than, instance_of, is_

from viable.conduit.hid_conduit import DeviceFilter
from viable.config.config import apply_conf, fetch_conf_path, load_config
from viable.device import KeyboardInfo, ViableDevice
from viable.protocol.decoder import ScalarByOffset
from viable.protocol.viable import LegacyCommands

vendor_id = None
product_id = None

conf = fetch_conf_path(load_config('keyboard_test', os.path.dirname(__file__)), ['keyboard'])
if conf:
    apply_conf(conf, sys.modules[__name__])


def keyboard_filters():
    return [DeviceFilter(int(vendor_id, 0), int(product_id, 0) if product_id else None)]


@unittest.skipUnless(vendor_id, "keyboard vendor_id not configured")
class KeyboardIntegrationTest(unittest.TestCase):

    def setUp(self):
        self.device = ViableDevice()
        self.device.open(keyboard_filters())

    def tearDown(self):
        self.device.close()

    def test_protocol_version(self):
        version = self.device.send_legacy(LegacyCommands.get_protocol_version,
                                          decoder=ScalarByOffset(16, offset=1, big_endian=True)).value(2)
        assert_that(version, greater_than(0))

    def test_device_identity(self):
        assert_that(self.device.device_name, instance_of(str))
        assert_that(self.device.is_viable_device, is_(True))

    def test_info(self):
        assert_that(self.device.get_info(), instance_of(KeyboardInfo))

    def test_definition(self):
        assert_that(self.device.get_definition(), instance_of(dict))

    def test_layer_colors(self):
        assert_that(len(self.device.get_all_layer_colors()), is_(16))
