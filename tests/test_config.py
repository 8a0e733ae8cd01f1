# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import textwrap
import pytest
from upower_notify.config import DEFAULT_RULES, Config, load_config
from upower_notify.errors import ConfigError
from upower_notify.transitions import TransitionKind
from upower_notify.upower import DEFAULT_DEVICE


def write(tmp_path, content: str) -> str:
    path = tmp_path / "config.toml"
    path.write_text(textwrap.dedent(content), "utf-8")
    return str(path)


def test_full_config(tmp_path):
    config = load_config(
        write(
            tmp_path,
            """
            device = "/org/freedesktop/UPower/devices/DisplayDevice"
            critical_threshold = 3
            low_threshold = 15
            command_timeout = 0
            notify_timeout = 2.5

            [[rule]]
            on = "entered-critical"
            exec = { argv = ["systemctl", "hibernate"] }

            [[rule]]
            on = ["entered-low", "exited-low"]
            percentage = [0, 30]
            [rule.notify]
            summary = "Battery at {percentage}%"
            urgency = "critical"
            timeout = 0
            """,
        )
    )

    assert config.device == "/org/freedesktop/UPower/devices/DisplayDevice"
    assert config.critical_threshold == 3
    assert config.low_threshold == 15
    assert config.command_timeout == 0
    assert config.notify_timeout == 2.5
    assert len(config.rules) == 2
    assert config.rules[0].run.args == ("systemctl", "hibernate")
    assert config.rules[1].on == (TransitionKind.ENTERED_LOW, TransitionKind.EXITED_LOW)
    assert config.rules[1].notify.urgency == "critical"


def test_defaults_when_optional_file_is_missing(tmp_path):
    config = load_config(str(tmp_path / "missing.toml"), required=False)

    assert config == Config()
    assert config.device == DEFAULT_DEVICE
    assert config.rules == DEFAULT_RULES
    assert [rule.on for rule in config.rules] == [
        (TransitionKind.ENTERED_CRITICAL,),
        (TransitionKind.ENTERED_LOW,),
        (TransitionKind.REACHED_FULL,),
    ]


def test_default_rules_are_kept_when_none_are_given(tmp_path):
    config = load_config(write(tmp_path, "low_threshold = 30\n"))

    assert config.low_threshold == 30
    assert config.rules == DEFAULT_RULES


def test_missing_required_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "missing.toml"))


def test_unreadable_file(tmp_path):
    with pytest.raises(ConfigError, match="Unable to read"):
        load_config(str(tmp_path))


def test_invalid_toml(tmp_path):
    with pytest.raises(ConfigError, match="not valid TOML"):
        load_config(write(tmp_path, "low_threshold = \n"))


@pytest.mark.parametrize(
    "content",
    [
        "low_thresold = 20\n",
        "low_threshold = 120\n",
        "critical_threshold = 20\nlow_threshold = 10\n",
        "critical_threshold = 10\nlow_threshold = 10\n",
        "low_threshold = 20\nfull_threshold = 10\n",
        "notify_timeout = 0\n",
        '[[rule]]\non = "entered-low"\n',
        '[[rule]]\non = "started-charging"\nnotify = { summary = "a" }\n'
        '[[rule]]\non = "started-charging"\npercentage = [0, 50]\nnotify = { summary = "b" }\n',
    ],
)
def test_invalid_config(tmp_path, content):
    with pytest.raises(ConfigError, match="Invalid config file"):
        load_config(write(tmp_path, content))


def test_shadowed_rule_is_explained(tmp_path):
    content = """
    [[rule]]
    notify = { summary = "anything" }

    [[rule]]
    on = "reached-full"
    notify = { summary = "full" }
    """

    with pytest.raises(ConfigError, match="rule #2 .* is never reached because rule #1"):
        load_config(write(tmp_path, content))


def test_full_threshold_must_be_above_low(tmp_path):
    with pytest.raises(ConfigError, match="full_threshold \\(20\\) must be higher than low_threshold"):
        load_config(write(tmp_path, "low_threshold = 20\nfull_threshold = 20\n"))
