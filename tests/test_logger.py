"""Test the logging system."""
from logging import Logger, getLogger as stdlib_getlogger
import sys

import pytest

from blptools.logger import CTX_STACK, LogMessage, context, get_logger, init_logging


def function(logger: Logger) -> None:
    """Test detecting different methods."""
    logger.info('Starting other function')
    logger.warning('Used wrong logic')
    logger.info('Finishing.')


def test_log_message() -> None:
    """Messages use str.format(), but only if arguments are passed."""
    assert str(LogMessage('Mipmap {} of {x}', (3, ), {'x': 'file'})) == 'Mipmap 3 of file'
    assert str(LogMessage('Braces {} are kept', (), {})) == 'Braces {} are kept'
    assert str(LogMessage('Line 1\nLine 2', (), {})) == 'Line 1\n | Line 2\n |___\n'


def test_get_logger_name() -> None:
    """Loggers are placed in the package namespace."""
    assert get_logger('blptools.blp').name == 'blptools.blp'
    assert get_logger('tool').name == 'blptools.tool'
    assert get_logger().name == 'blptools'


def test_context_restored() -> None:
    """The context stack is unwound even if the block raises."""
    with pytest.raises(KeyError):
        with context('Outer'):
            with context('Inner'):
                assert CTX_STACK.get() == ('Outer', 'Inner')
                raise KeyError
    assert CTX_STACK.get() == ()
    with context('Other') as name:
        assert name == 'Other'


def test_logging_output(capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the output of logging to the console."""
    monkeypatch.setattr(stdlib_getlogger(), 'handlers', [])
    monkeypatch.delenv('BLPTOOLS_DEBUG', raising=False)
    hook = sys.excepthook

    root = init_logging()
    # Only handlers are added, global exception handling is left alone.
    assert sys.excepthook is hook
    assert len(stdlib_getlogger().handlers) == 2

    root.info('hello there')
    root.debug('Not shown')
    root.error('Root error!:\n- Something failed.')
    get_logger('another').warning('A problem: {}', 45)
    function(root)
    with context('First'):
        root.info('Message')
        with context('Second'):
            root.info('More messages')
        root.warning('A warning.')
    # Records from outside our namespace still format correctly.
    stdlib_getlogger('thirdparty').warning('Foreign %s', 'record')

    out, err = capsys.readouterr()
    assert 'hello there' in out
    assert 'Not shown' not in out
    assert 'Starting other function' in out
    assert '[I] (First) ' in out
    assert '[I] (First, Second) ' in out
    assert 'More messages' in out
    # Warnings and errors only go to stderr.
    assert 'A problem' not in out
    assert 'A problem: 45' in err
    assert 'Root error!:\n | - Something failed.\n |___' in err
    assert '[W] (First) ' in err
    assert 'Used wrong logic' in err
    assert '[W] thirdparty: Foreign record' in err


def test_debug_env(capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch) -> None:
    """Debug messages are shown if the environment variable is set."""
    monkeypatch.setattr(stdlib_getlogger(), 'handlers', [])
    monkeypatch.setenv('BLPTOOLS_DEBUG', '1')
    init_logging('debugging').debug('Detailed {}', 'info')
    out, err = capsys.readouterr()
    assert '[D] blptools.debugging: Detailed info' in out
    assert err == ''
