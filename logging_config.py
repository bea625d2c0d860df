"""
Logging setup for Anzen ERP.
Call setup_logging() once from create_app().

Every record carries the document it is about (GRN, inquiry, Gmail message)
and, inside a request, the route and the signed-in user. The Gmail pipeline
also writes its own rotating file so sync runs can be read without the
request noise.
"""
import logging
import logging.handlers
import os
import json
from datetime import datetime, timezone

from flask import g, has_request_context, request

from anzen.core.paths import LOG_DIR

REQUEST_FIELDS = ("route", "method", "status", "duration_ms", "user")
DOCUMENT_FIELDS = ("grn_number", "inquiry_number", "message_id")
EXTRA_FIELDS = REQUEST_FIELDS + DOCUMENT_FIELDS

# loggers whose records also go to email_sync.log
MAIL_LOGGERS = ("anzen.email_sync", "anzen.email_parser", "anzen.gmail", "anzen.mailer")

MAX_BYTES = 5_000_000
BACKUPS = 5


class RequestContextFilter(logging.Filter):
    """Stamps route, method and user on records logged while serving a request."""

    def filter(self, record):
        if has_request_context():
            if not hasattr(record, "route"):
                record.route = request.path
                record.method = request.method
            if not hasattr(record, "user"):
                profile = g.get("current_user")
                record.user = profile["username"] if profile else None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""
    def format(self, record):
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "line": f"{record.module}:{record.lineno}",
        }
        entry.update({k: getattr(record, k) for k in EXTRA_FIELDS if hasattr(record, k)})
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Colored console line; the document number, if any, trails in brackets."""
    COLORS = {
        "DEBUG": "\033[36m", "INFO": "\033[32m",
        "WARNING": "\033[33m", "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        line = f"{ts} [{record.levelname[0]}] {record.name}: {record.getMessage()}"
        refs = [str(getattr(record, k)) for k in DOCUMENT_FIELDS if getattr(record, k, None)]
        if refs:
            line += f" [{', '.join(refs)}]"
        if record.exc_info and record.exc_info[0]:
            line += "\n" + self.formatException(record.exc_info)
        return f"{color}{line}{self.RESET}"


def _rotating(filename: str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        os.path.join(LOG_DIR, filename), maxBytes=MAX_BYTES, backupCount=BACKUPS)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(level=None, json_logs=None):
    """
    Configure the root logger plus the Gmail pipeline file.

    Args:
        level: LOG_LEVEL env or INFO
        json_logs: JSON_LOGS env; human-readable console otherwise
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if json_logs is None:
        json_logs = os.environ.get("JSON_LOGS", "").lower() in ("1", "true", "yes")

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    root.handlers.clear()
    context = RequestContextFilter()

    console = logging.StreamHandler()
    console.setFormatter(JSONFormatter() if json_logs else HumanFormatter())
    console.addFilter(context)
    root.addHandler(console)

    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        app_file = _rotating("anzen.log")
        app_file.addFilter(context)
        root.addHandler(app_file)
        mail_file = _rotating("email_sync.log")
        for name in MAIL_LOGGERS:
            mail_logger = logging.getLogger(name)
            for old in list(mail_logger.handlers):
                if getattr(old, "baseFilename", "") == mail_file.baseFilename:
                    mail_logger.removeHandler(old)
                    old.close()
            mail_logger.addHandler(mail_file)
    except OSError:
        root.warning("Log dir %s not writable, console logging only", LOG_DIR)

    for name in ("urllib3", "werkzeug", "reportlab"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("anzen").info("Logging initialized (%s, %s)", level,
                                    "json" if json_logs else "human")
