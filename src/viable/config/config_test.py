import os
import shutil
import tempfile
import types
import unittest
from unittest.mock import patch

from configobj import ConfigObjError
from hamcrest import assert_that, is_, equal_to, has_property, is_not, calling, raises, empty

from viable import settings
from viable.config.config import configure_module, config_filename, config_flavor, load_config_file_base, \
    load_config, map_os_name, fetch_conf_path, apply_conf


def write_file(directory, name, text):
    with open(os.path.join(directory, name), 'w') as f:
        f.write(text)


def sample_module(directory, name='sample'):
    module = types.ModuleType('pkg.' + name)
    module.__package__ = 'pkg'
    module.__file__ = os.path.join(directory, name + '.py')
    module.timeout = 1.0
    module.attempts = 5
    module.label = 'none'
    return module


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        self.directory = tempfile.mkdtemp()
        self.user_directory = tempfile.mkdtemp()
        write_file(self.directory, 'sample.default.cfg',
                   "[pkg]\n  [[sample]]\n    timeout = 2.5\n    attempts = 3\n    label = default\n")
        write_file(self.directory, 'sample.schema.cfg',
                   "[pkg]\n  [[sample]]\n    timeout = float(min=0.1)\n    attempts = integer(min=1, max=10)\n"
                   "    label = string\n")

    def tearDown(self):
        shutil.rmtree(self.directory)
        shutil.rmtree(self.user_directory)

    def test_config_file_not_found(self):
        assert_that(calling(load_config_file_base).with_args('blah'), raises(IOError))

    def test_missing_optional_file_is_empty(self):
        config = load_config_file_base(os.path.join(self.directory, 'nothing.cfg'), must_exist=False)
        assert_that(config.keys(), is_(empty()))

    def test_config_file_invalid_syntax(self):
        write_file(self.directory, 'bad.cfg', "[[nested]]\nvalue=1\n")
        assert_that(calling(load_config_file_base).with_args(config_filename('bad', self.directory)),
                    raises(ConfigObjError, "at .*bad.cfg"))

    def test_config_flavor(self):
        assert_that(config_flavor('sample', 'default'), is_('sample.default'))
        assert_that(config_flavor('sample'), is_('sample'))

    def test_defaults_are_converted_by_schema(self):
        config = load_config('sample', self.directory, self.user_directory)
        section = fetch_conf_path(config, ['pkg', 'sample'])
        assert_that(section['timeout'], is_(2.5))
        assert_that(section['attempts'], is_(3))

    def test_local_file_overrides_default(self):
        write_file(self.directory, 'sample.cfg', "[pkg]\n  [[sample]]\n    attempts = 7\n")
        module = sample_module(self.directory)
        configure_module(module, user_directory=self.user_directory)
        assert_that(module.attempts, is_(7))
        assert_that(module.timeout, is_(2.5))

    def test_user_file_overrides_default(self):
        write_file(self.user_directory, 'sample.cfg', "[pkg]\n  [[sample]]\n    label = mine\n")
        module = sample_module(self.directory)
        configure_module(module, user_directory=self.user_directory)
        assert_that(module.label, is_('mine'))

    def test_invalid_value_fails_validation(self):
        write_file(self.directory, 'sample.cfg', "[pkg]\n  [[sample]]\n    attempts = 0\n")
        assert_that(calling(load_config).with_args('sample', self.directory, self.user_directory),
                    raises(ConfigObjError, "sample failed validation: pkg.sample.attempts"))

    def test_values_without_attribute_are_not_applied(self):
        write_file(self.directory, 'sample.cfg', "[pkg]\n  [[sample]]\n    missing_value = 1\n")
        module = sample_module(self.directory)
        configure_module(module, user_directory=self.user_directory)
        assert_that(module, is_not(has_property('missing_value')))

    def test_apply_conf_returns_applied_names(self):
        module = sample_module(self.directory)
        assert_that(apply_conf({'label': 'x', 'other': 1}, module), is_(['label']))

    def test_non_existent_config_path(self):
        assert_that(fetch_conf_path({'pkg': {}}, ['pkg', 'sample']), is_(None))

    def test_module_without_package(self):
        module = types.ModuleType('loose')
        assert_that(calling(configure_module).with_args(module), raises(ConfigObjError, '.*no package'))

    def test_map_os_name(self):
        assert_that(map_os_name('Windows'), is_('windows'))
        assert_that(map_os_name('Darwin'), is_('osx'))


class SettingsTestCase(unittest.TestCase):

    def test_shipped_defaults_match_module(self):
        with patch.multiple(settings, command_timeout=0, chunk_size=0, max_definition_size=0):
            user_directory = tempfile.mkdtemp()
            try:
                settings.configure(user_directory=user_directory)
            finally:
                shutil.rmtree(user_directory)
            assert_that(settings.command_timeout, is_(equal_to(1.0)))
            assert_that(settings.chunk_size, is_(22))
            assert_that(settings.max_definition_size, is_(50 * 1024 * 1024))
