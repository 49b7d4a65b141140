import logging
import sys

_CONTEXT_ATTR = "ingest_context"


class ContextFormatter(logging.Formatter):
    """Appends the key=value context passed to Log calls, e.g. upload_id."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context: dict[str, object] = getattr(record, _CONTEXT_ATTR, None) or {}
        if not context:
            return line
        pairs = " ".join(f"{key}={context[key]}" for key in sorted(context))
        return f"{line} [{pairs}]"


class Log:
    """Process-wide logging facade for the ingest API and the transcode worker."""

    _logger: logging.Logger = logging.getLogger("media_ingest")

    @classmethod
    def configure(cls, log_level: str) -> None:
        cls._logger.setLevel(log_level.upper())
        if not cls._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                ContextFormatter("%(asctime)s [%(levelname)s] %(threadName)s %(message)s")
            )
            cls._logger.addHandler(handler)

    @classmethod
    def _log(cls, level: int, message: str, context: dict[str, object], exc_info: bool = False) -> None:
        # Context travels under one attribute so keys like "filename" cannot clash with LogRecord fields.
        cls._logger.log(level, message, exc_info=exc_info, extra={_CONTEXT_ATTR: context})

    @classmethod
    def info(cls, message: str, **context: object) -> None:
        cls._log(logging.INFO, message, context)

    @classmethod
    def error(cls, message: str, **context: object) -> None:
        cls._log(logging.ERROR, message, context)

    @classmethod
    def exception(cls, message: str, **context: object) -> None:
        """Log at error level with the active exception's traceback."""
        cls._log(logging.ERROR, message, context, exc_info=True)

    @classmethod
    def warning(cls, message: str, **context: object) -> None:
        cls._log(logging.WARNING, message, context)

    @classmethod
    def debug(cls, message: str, **context: object) -> None:
        cls._log(logging.DEBUG, message, context)
