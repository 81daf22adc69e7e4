"""
Wrapper around logging, so messages can use str.format() instead of %.

Each module does ``LOGGER = get_logger(__name__)``. Blocks of work can be tagged
with :py:func:`context`, which is shown in console output.
"""
from typing import TYPE_CHECKING, Any, Dict, Generator, Mapping, Optional, Tuple, cast
import contextlib
import contextvars
import logging
import os
import sys


__all__ = ['LogMessage', 'LoggerAdapter', 'get_logger', 'init_logging', 'context']
# Only generic in stubs!
CTX_STACK: 'contextvars.ContextVar[Tuple[str, ...]]' = contextvars.ContextVar(
    'blptools_logger', default=(),
)
CONSOLE_FORMAT = '[{levelname[0]}]{blptools_context} {name}: {message}'


class LogMessage:
    """Holds a message and its arguments, and joins them with str.format() when converted to a string."""
    def __init__(self, fmt: str, args: Tuple[object, ...], kwargs: Dict[str, object]) -> None:
        self.fmt = fmt
        self.args = args
        self.kwargs = kwargs

    def __str__(self) -> str:
        # Braces are only special if arguments were actually passed.
        if self.args or self.kwargs:
            msg = self.fmt.format(*self.args, **self.kwargs)
        else:
            msg = self.fmt
        if '\n' not in msg:
            return msg
        # Indent continuation lines, so they stay associated with the level tag.
        lines = msg.rstrip().split('\n')
        return '\n | '.join(lines) + '\n |___\n'


if TYPE_CHECKING:  # Only generic in stubs.
    _AdapterBase = logging.LoggerAdapter[logging.Logger]
else:
    _AdapterBase = logging.LoggerAdapter


class LoggerAdapter(_AdapterBase):
    """Passes str.format() style arguments through, and records the current context."""
    logger: logging.Logger

    def __init__(self, logger: logging.Logger) -> None:
        super().__init__(logger, {})

    def log(
        self,
        level: int,
        msg: Any,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        extra: Optional[Mapping[str, object]] = None,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Log a message, formatting ``args`` and ``kwargs`` into it lazily."""
        if not self.isEnabledFor(level):
            return
        ctx = CTX_STACK.get()
        new_extra = dict(extra or {})
        new_extra['blptools_context'] = f' ({", ".join(ctx)})' if ctx else ''
        self.logger.log(
            level,
            LogMessage(str(msg), args, kwargs),
            exc_info=exc_info,
            stack_info=stack_info,
            extra=new_extra,
            stacklevel=stacklevel + 2,
        )


class Formatter(logging.Formatter):
    """Tolerates records logged without going through our adapter."""
    def format(self, record: logging.LogRecord) -> str:
        record.__dict__.setdefault('blptools_context', '')
        return super().format(record)


def get_logger(name: str = '') -> logging.Logger:
    """Get the named logger, inside the ``blptools`` namespace.

    The result accepts :external:py:meth:`str.format()` style arguments instead of ``%``.
    """
    if name.startswith('blptools.'):
        name = name[len('blptools.'):]
    log = logging.getLogger('blptools.' + name if name else 'blptools')
    return cast(logging.Logger, LoggerAdapter(log))


def init_logging(main_logger: str = '') -> logging.Logger:
    """Add console handlers to the root logger, for use by scripts.

    Messages up to INFO go to stdout, warnings and errors to stderr. Debug messages are included
    if the ``BLPTOOLS_DEBUG`` environment variable is set to ``1``.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    formatter = Formatter(CONSOLE_FORMAT, style='{')

    if sys.stdout is not None:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(
            logging.DEBUG if os.environ.get('BLPTOOLS_DEBUG') == '1' else logging.INFO
        )
        stdout_handler.setFormatter(formatter)
        if sys.stderr is not None:
            # Those are printed to stderr instead.
            stdout_handler.addFilter(lambda record: record.levelno < logging.WARNING)
        root.addHandler(stdout_handler)

    if sys.stderr is not None:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    return get_logger(main_logger)


@contextlib.contextmanager
def context(name: str) -> Generator[str, None, None]:
    """Tag any logs produced inside this block with the given name."""
    token = CTX_STACK.set(CTX_STACK.get() + (name, ))
    try:
        yield name
    finally:
        CTX_STACK.reset(token)
