"""
Tunables for the protocol engine.

The values below are the defaults. configure() overrides them from settings.cfg files, see
viable.config.config.configure_module for the order the files are applied in.
"""
import sys

from viable.config.config import configure_module

# seconds to wait for the response to a command
command_timeout = 1.0

# bootstrap requests sent before giving up on a lease
bootstrap_attempts = 5

# inbound reports examined per bootstrap attempt
bootstrap_reads = 50

# seconds to wait for each of those reports
bootstrap_read_timeout = 0.5

# the fraction of the lease ttl after which it is renewed
renewal_fraction = 0.9

# payload bytes per chunk in chunked transfers
chunk_size = 22

# the largest definition size a device may announce
max_definition_size = 50 * 1024 * 1024

# seconds the reader blocks on each HID read, which bounds how long close() takes
read_poll_interval = 0.1


def configure(directory=None, user_directory=None):
    configure_module(sys.modules[__name__], directory=directory, user_directory=user_directory)
