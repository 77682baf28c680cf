"""Function loading for the command-line entry point.

Resolves targets of the form ``package.module:attribute`` (the attribute
defaults to ``main``) into the function to serve.
"""

import importlib
import inspect
import logging
from typing import Any, Callable

from eventfn.config import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ATTRIBUTE = "main"


def load_function(target: str) -> Callable[..., Any]:
    """Import and return the function named by ``target``.

    Args:
        target: ``module`` or ``module:attribute``; dotted attributes such as
            ``module:Handler.handle`` are followed

    Returns:
        The callable

    Raises:
        ConfigurationError: If the target is malformed, cannot be imported,
            or does not name a callable
    """
    module_path, _, attribute = target.partition(":")
    module_path = module_path.strip()
    attribute = attribute.strip() or DEFAULT_ATTRIBUTE

    if not module_path:
        raise ConfigurationError(
            f"Invalid function target '{target}'. Expected 'package.module:function'"
        )

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ConfigurationError(f"Failed to import module {module_path}: {e}") from e
    except Exception as e:
        logger.error(f"Error while importing module {module_path}: {e}", exc_info=True)
        raise ConfigurationError(
            f"Failed to import module {module_path}: {type(e).__name__}: {e}"
        ) from e

    obj: Any = module
    for part in attribute.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigurationError(
                f"Module {module_path} has no attribute '{attribute}'"
            ) from e

    if not callable(obj) or inspect.isclass(obj):
        raise ConfigurationError(f"{target} is not a function")

    logger.info(f"Loaded function {module_path}:{attribute}")
    return obj
