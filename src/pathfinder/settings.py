"""
Communication settings for the scale. The values here are the defaults; configure()
replaces them with those from the pathfinder configuration files, section
[pathfinder] [[settings]].
"""
import sys

from pathfinder.config.config import configure_module

# line speed of the Pathfinder 6140 serial output
baudrate = 9600
# seconds a read waits for data before checking for a stop request
read_timeout = 0.5
# seconds a command write may block before failing
write_timeout = 2.0
# seconds of silence that end a chunk of data from the scale
chunk_gap = 0.02
# seconds disconnect waits for the reader thread to exit
join_timeout = 5.0
encoding = 'utf-8'
# 'chunk' publishes every chunk received as a reading, 'line' waits for a line feed
framing = 'chunk'
# only offer USB serial adapters known to be fitted to the scale
recognised_only = False


def configure(user_directory=None):
    return configure_module(sys.modules[__name__], 'pathfinder', user_directory)
