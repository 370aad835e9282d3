"""
Layered configuration files, applied as attribute values onto a target object or module.

For a configuration named `name`, these files are merged, later files overriding earlier ones:

- `name.default.cfg` next to the module being configured
- `name.<os>.cfg` next to the module, where os is windows, linux or osx
- `name.cfg` in the user's home directory (or a given user directory)
- `name.cfg` next to the module

The result is validated against `name.schema.cfg`, which converts values to their
declared types and fills in defaults.
"""
import logging
import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from configobj.validate import Validator

logger = logging.getLogger(__name__)

# The default extension for configuration files
config_extension = '.cfg'


def config_flavor(name, flavor=None):
    """
    >>> config_flavor('pathfinder', 'default')
    'pathfinder.default'
    """
    return name if not flavor else name + '.' + flavor


def config_filename(name, directory):
    return os.path.join(directory, name + config_extension)


def load_config_file_base(file, must_exist=True) -> ConfigObj:
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file, empty if the file does not exist.
    """
    if not must_exist and not os.path.exists(file):
        return ConfigObj()
    try:
        return ConfigObj(file, interpolation='Template', file_error=True)
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def config_flavor_file(name, directory, flavor=None) -> ConfigObj:
    """ Loads the named specialization of a config file, if it exists. """
    return load_config_file_base(config_filename(config_flavor(name, flavor), directory), must_exist=False)


def load_schema(name, directory) -> ConfigObj:
    """ Loads the validation schema. Checks such as integer(min=1, default=9600) are kept whole. """
    file = config_filename(config_flavor(name, 'schema'), directory)
    if not os.path.exists(file):
        return ConfigObj(list_values=False, _inspec=True)
    try:
        return ConfigObj(file, list_values=False, _inspec=True, file_error=True)
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


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


def describe_errors(config, result):
    """ formats the validation failures as 'section/key: error' """
    return '; '.join('%s: %s' % ('/'.join(sections + [key or '']), error or 'missing')
                     for sections, key, error in flatten_errors(config, result))


def load_config(name, directory, user_directory=None) -> ConfigObj:
    """
    Loads and merges all the configuration files that relate to the given name,
    then validates them against the schema.
    :param directory: the location of the default, platform and schema files
    :param user_directory: the location of the user's override. Defaults to the home directory.
    :raises ConfigObjError: if the merged configuration does not validate
    """
    user_directory = user_directory or os.path.expanduser('~')
    config = ConfigObj()
    for layer in (config_flavor_file(name, directory, 'default'),
                  config_flavor_file(name, directory, os_name()),
                  config_flavor_file(name, user_directory),
                  config_flavor_file(name, directory)):
        config.merge(layer)

    config.configspec = load_schema(name, directory)
    result = config.validate(Validator(), preserve_errors=True)
    if result is not True:
        raise ConfigObjError("the config file %s failed validation: %s" % (name, describe_errors(config, result)))
    return config


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section
    :param conf:    The root configuration
    :param path:    An iterable of section names to descend through
    :return: The section identified by the path, or None
    """
    for p in path:
        conf = conf.get(p, None)
        if conf is None:
            return None
    return conf


def apply_conf(conf: Section, target):
    """
    Sets each value in the section as an attribute of the target, for attributes the target already has.
    :return: the names of the attributes set
    """
    applied = []
    for k in conf.scalars:
        if hasattr(target, k):
            setattr(target, k, conf[k])
            applied.append(k)
        else:
            logger.warning("ignoring unknown setting %s", k)
    return applied


def apply(target, config_path, config_name, directory, user_directory=None):
    """
    Applies the values in a section of a configuration to a target object.
    :param config_path: The dotted path of the section, such as 'pathfinder.settings'
    :return: the names of the attributes set
    """
    conf = load_config(config_name, directory, user_directory)
    section = fetch_conf_path(conf, config_path.split('.'))
    return apply_conf(section, target) if section else []


def configure_module(module, config_name=None, user_directory=None):
    """
    Applies the configuration to the given module's globals.
    The configuration files are looked up next to the module's source file, and
    the values applied are those in the section named after the module's full name,
    e.g. [pathfinder] [[settings]] for the module pathfinder.settings.
    """
    fqname = module.__name__
    if not config_name:
        config_name = fqname.split('.')[-1]
    applied = apply(module, fqname, config_name, os.path.dirname(module.__file__), user_directory)
    logger.debug("configured %s from %s: %s", fqname, config_name, ', '.join(applied))
    return applied
