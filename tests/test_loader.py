"""Tests for loading functions from import targets."""

import pytest

from eventfn.config import ConfigurationError
from eventfn.loader import load_function
from examples.echo import func


def test_load_module_and_attribute():
    """Test that module:attribute resolves to the function."""
    assert load_function("examples.echo.func:main") is func.main


def test_default_attribute_is_main():
    """Test that a bare module path loads its main function."""
    assert load_function("examples.echo.func") is func.main


def test_dotted_attribute():
    """Test that dotted attributes are followed."""
    assert load_function("examples.echo.func:Greeting.model_validate") is not None


def test_empty_module_fails():
    """Test that a target without a module is rejected."""
    with pytest.raises(ConfigurationError):
        load_function(":main")


def test_missing_module_fails():
    """Test that unimportable modules are reported."""
    with pytest.raises(ConfigurationError) as exc_info:
        load_function("no_such_package.module:main")

    assert "Failed to import" in str(exc_info.value)


def test_missing_attribute_fails():
    """Test that missing attributes are reported."""
    with pytest.raises(ConfigurationError) as exc_info:
        load_function("examples.echo.func:missing")

    assert "missing" in str(exc_info.value)


def test_class_is_not_a_function():
    """Test that classes are rejected."""
    with pytest.raises(ConfigurationError):
        load_function("examples.echo.func:Greeting")


def test_module_raising_on_import_fails(tmp_path, monkeypatch):
    """Test that errors raised while importing the module are reported."""
    (tmp_path / "eventfn_broken_target.py").write_text(
        'raise RuntimeError("database unreachable")\n'
    )
    monkeypatch.syspath_prepend(str(tmp_path))

    with pytest.raises(ConfigurationError) as exc_info:
        load_function("eventfn_broken_target:main")

    assert "RuntimeError" in str(exc_info.value)
    assert "database unreachable" in str(exc_info.value)
