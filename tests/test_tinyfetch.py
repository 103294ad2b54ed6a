import pytest

from tinyloader.tinyfetch import format_uptime, os_pretty_name

OS_RELEASE = 'NAME="Example"\nPRETTY_NAME="Example Linux 1.0"\nID=example\n'


def test_os_pretty_name():
    assert os_pretty_name(OS_RELEASE) == "Example Linux 1.0"


def test_os_pretty_name_missing_key():
    with pytest.raises(ValueError):
        os_pretty_name('NAME="Example"\n')


def test_os_pretty_name_unterminated():
    with pytest.raises(ValueError):
        os_pretty_name('PRETTY_NAME="Example')


def test_format_uptime_zero():
    assert format_uptime("0.00 0.00\n") == "0 days, 0 hours, 0 minutes"


def test_format_uptime_whole_days():
    assert format_uptime("172800.55 10.00\n") == "2 days, 0 hours, 0 minutes"


def test_format_uptime_ignores_fraction():
    assert format_uptime("90061.99 1.00") == format_uptime("90061.01 5.00")


def test_format_uptime_non_numeric_is_zero():
    assert format_uptime("abc.1 2") == format_uptime("0.00 0.00")