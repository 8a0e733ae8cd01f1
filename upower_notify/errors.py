# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

class UpowerNotifyError(Exception):
    """
    Base exception used for all module-based errors. When raised while monitoring, it will be logged
    but the daemon keeps watching the battery.
    """

class UpowerNotifyFatalError(UpowerNotifyError):
    """
    This exception is, as the name implies, fatal, therefore will stop the application when raised.
    """

class ConfigError(UpowerNotifyFatalError):
    """
    The configuration file could not be read or does not describe a valid rule set. Always raised
    before the monitoring starts.
    """

class SubscriptionLostError(UpowerNotifyFatalError):
    """
    The connection to the power service was lost and could not be recovered within the retry budget.
    """
