import logging
import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from configobj.validate import Validator

logger = logging.getLogger(__name__)

# The default extension for configuration files
config_extension = '.cfg'

# where per-user overrides are read from
user_config_directory = os.path.join('~', '.viable')


def config_flavor(name, flavor=None):
    """
    >>> config_flavor('settings', 'schema')
    'settings.schema'
    >>> config_flavor('settings')
    'settings'
    """
    return name if not flavor else name + '.' + flavor


def config_filename(name, directory):
    return os.path.join(directory, name + config_extension)


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist) \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def config_flavor_file(name, directory, flavor=None) -> ConfigObj:
    """
    Loads a specialization of a config file, named after the base followed by a period and the flavor.
    A missing file gives an empty configuration.
    """
    return load_config_file_base(config_filename(config_flavor(name, flavor), directory), False)


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def load_schema(name, directory) -> ConfigObj:
    """ loads <name>.schema.cfg, where values are validation checks such as integer(min=1, max=22) """
    file = config_filename(config_flavor(name, 'schema'), directory)
    return ConfigObj(file, list_values=False, _inspec=True) if os.path.exists(file) else ConfigObj()


def describe_errors(config, result):
    """ lists the keys that failed validation as 'section.key' strings """
    failures = []
    for section_list, key, _ in flatten_errors(config, result):
        failures.append('.'.join(section_list + [key if key is not None else '(missing section)']))
    return failures


def load_config(name, directory, user_directory=None):
    """
    Loads all the configuration files that relate to the given name, later ones overriding earlier ones:
    - the default specialization, <name>.default.cfg
    - the platform specialization, such as <name>.linux.cfg
    - the user override in user_directory
    - the local configuration, <name>.cfg
    The merged configuration is validated against <name>.schema.cfg, which also converts the values
    to their declared types.
    :param directory: the location of the configuration files
    :param user_directory: the location of the user override, ~/.viable by default
    """
    user_directory = os.path.expanduser(user_directory or user_config_directory)
    config = ConfigObj()
    config.merge(config_flavor_file(name, directory, 'default'))
    config.merge(config_flavor_file(name, directory, os_name()))
    config.merge(config_flavor_file(name, user_directory))
    config.merge(config_flavor_file(name, directory))

    config.configspec = load_schema(name, directory)
    result = config.validate(Validator())
    if result is not True:
        raise ConfigObjError("the config file %s failed validation: %s" %
                             (name, ', '.join(describe_errors(config, result))))
    return config


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section, or None if any part of the path is missing.
    """
    for p in path:
        conf = conf.get(p, None)
        if conf is None:
            return None
    return conf


def apply_conf(conf: Section, target):
    """
    Sets each attribute of the target that has a value of the same name in the configuration.
    Values with no matching attribute are ignored.
    """
    applied = []
    for k, v in conf.items():
        if hasattr(target, k):
            setattr(target, k, v)
            applied.append(k)
    return applied


def apply(target, config_path, config_name, directory, user_directory=None):
    """
    Applies defined values from a path to a given target object.
    :param target: The object to receive the values defined
    :param config_path: The path that is the prefix to the values defined. The path is split on '.'.
    :param config_name: The configuration file to load.
    :param directory: the directory containing the config file
    """
    conf = fetch_conf_path(load_config(config_name, directory, user_directory), config_path.split('.'))
    if conf:
        applied = apply_conf(conf, target)
        logger.debug("configured %s from %s: %s", config_path, config_name, ", ".join(applied))


def configure_module(module, config_name=None, directory=None, user_directory=None):
    """
    Applies the configuration to the given module.
    The files are named after the module, and found beside its source file unless a directory is given.
    Values are read from the section nested by the module's qualified name, e.g. [viable] [[settings]].
    """
    if not module.__package__:
        raise ConfigObjError('module %s has no package defined' % module.__name__)
    if not config_name:
        config_name = module.__name__.split('.')[-1]
    directory = directory or os.path.dirname(module.__file__)
    apply(module, module.__name__, config_name, directory, user_directory)
