# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import sys
from argparse import ArgumentParser
from . import __version__
from .app import App


def main():
    """
    upower-notify watches the battery through UPower and sends desktop notifications or runs
    commands when it starts or stops charging, gets low, critical or full.

    Rules are read from $XDG_CONFIG_HOME/upower-notify/config.toml unless another file is given.
    """

    parser = ArgumentParser(description=main.__doc__)
    parser.add_argument("-c", "--config-file", help="user config file path")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--verbose", action="store_true", help="increase the log verbosity"
    )

    args = parser.parse_args()
    sys.exit(App(config_file=args.config_file, verbose=args.verbose).start())
