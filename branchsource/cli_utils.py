"""
Common CLI utilities and decorators for consistent command behavior.
"""

import json
import logging
import sys
from functools import wraps
from typing import Generator

import click

from .exit_codes import (
    SUCCESS, INTERRUPTED,
    get_exit_code_for_exception, CommandError
)
from .format_utils import format_output, get_format_from_env

logger = logging.getLogger("branchsource")


def standard_command():
    """
    Decorator that provides standard CLI behavior:
    - Log messages on stderr, clean data output on stdout
    - --verbose/-v switches logging to DEBUG
    - --quiet/-q suppresses data output
    - Consistent error handling with JSON error objects

    Results are collected before any line is printed, so a failure midway
    prints only the error object.
    """
    def decorator(func):

        @wraps(func)
        def wrapper(*args, **kwargs):
            verbose = kwargs.get('verbose', False)
            quiet = kwargs.get('quiet', False)
            output_format = kwargs.get('format') or get_format_from_env('jsonl')
            kwargs['format'] = output_format

            if verbose:
                logger.setLevel(logging.DEBUG)

            try:
                result = func(*args, **kwargs)

                if quiet:
                    if isinstance(result, Generator):
                        for _ in result:
                            pass
                elif result is None:
                    # Command handled its own output (tables)
                    pass
                elif isinstance(result, dict):
                    for line in format_output([result], output_format):
                        print(line, flush=True)
                else:
                    result = list(result)
                    for line in format_output(result, output_format):
                        print(line, flush=True)

                sys.exit(SUCCESS)

            except KeyboardInterrupt:
                logger.error("Interrupted by user")
                sys.exit(INTERRUPTED)
            except click.ClickException:
                raise
            except CommandError as e:
                logger.error(str(e))
                if not quiet:
                    error_obj = {
                        "error": str(e),
                        "type": type(e).__name__,
                        "exit_code": e.exit_code
                    }
                    print(json.dumps(error_obj, ensure_ascii=False), flush=True)
                sys.exit(e.exit_code)
            except Exception as e:
                logger.error(f"Command failed: {e}")
                if not quiet:
                    error_obj = {
                        "error": str(e),
                        "type": type(e).__name__
                    }
                    print(json.dumps(error_obj, ensure_ascii=False), flush=True)
                sys.exit(get_exit_code_for_exception(e))

        return wrapper
    return decorator


# Standard options that many commands share
common_options = {
    'verbose': click.option('-v', '--verbose', is_flag=True,
                            help='Log debug output to stderr'),
    'quiet': click.option('-q', '--quiet', is_flag=True,
                          help='Suppress data output'),
    'format': click.option('-f', '--format',
                           type=click.Choice(['jsonl', 'json', 'yaml']),
                           help='Output format (default: jsonl, or from BRANCHSOURCE_FORMAT env)'),
    'table': click.option('--table', is_flag=True,
                          help='Display as formatted table'),
}


def add_common_options(*option_names):
    """
    Decorator to add common options to a command.

    Example:
        @add_common_options('verbose', 'quiet', 'format')
        def my_command(verbose, quiet, format):
            ...
    """
    def decorator(func):
        for name in reversed(option_names):
            if name in common_options:
                func = common_options[name](func)
        return func
    return decorator
