import pytest

from nodeship.utils import CommandError, Shell, mask_secret


def test_missing_program_raises_command_error():
    with pytest.raises(CommandError) as excinfo:
        Shell(sudo=False).run("nodeship-no-such-program")
    assert excinfo.value.returncode == 127
    assert excinfo.value.cmd == ["nodeship-no-such-program"]


def test_missing_program_fails_even_unchecked():
    with pytest.raises(CommandError):
        Shell(sudo=False).run("nodeship-no-such-program", check=False, capture=False)


def test_succeeds_on_missing_program():
    assert not Shell(sudo=False).succeeds("nodeship-no-such-program")


def test_run_returns_stripped_output():
    assert Shell(sudo=False).run("echo", "  hello ") == "hello"


def test_failing_command():
    with pytest.raises(CommandError) as excinfo:
        Shell(sudo=False).run("false")
    assert excinfo.value.returncode == 1


def test_mask_secret():
    assert mask_secret("https://tok@github.com", "tok") == "https://***@github.com"
    assert mask_secret("nothing", None) == "nothing"
