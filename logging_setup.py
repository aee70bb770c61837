"""
Logging configuration.

Records go to stderr and, when a database is available, are also persisted to
a MongoDB collection (``server_logs`` by default) so they can be inspected
from the admin side without shell access. Persistence runs on a
``QueueListener`` thread; request threads only enqueue.
"""
import atexit
import copy
import logging
import os
import queue
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

log_listener = None


def skip_driver_records(record):
    # the driver's own records would recurse through insert_one
    return not record.name.startswith("pymongo")


class MongoLogHandler(logging.Handler):
    """Inserts each record as a document into ``collection``."""

    def __init__(self, collection, level=logging.INFO):
        super().__init__(level)
        self.collection = collection
        self.addFilter(skip_driver_records)

    def emit(self, record):
        try:
            entry = {
                "level": record.levelname.lower(),
                "logger": record.name,
                "message": record.getMessage(),
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc),
            }
            if record.exc_info:
                entry["exception"] = logging.Formatter().formatException(record.exc_info)
            elif record.exc_text:
                entry["exception"] = record.exc_text
            self.collection.insert_one(entry)
        except Exception:
            self.handleError(record)


class LogQueueHandler(QueueHandler):
    """Enqueues records with the message merged and the traceback kept as text."""

    def __init__(self, log_queue, level=logging.INFO):
        super().__init__(log_queue)
        self.setLevel(level)
        self.addFilter(skip_driver_records)

    def prepare(self, record):
        record = copy.copy(record)
        record.msg = record.getMessage()
        record.args = None
        if record.exc_info:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
            record.exc_info = None
        return record


def stop_log_listener():
    """Flush queued records to the store and stop the listener thread."""
    global log_listener
    if log_listener is not None:
        log_listener.stop()
        log_listener = None


def configure_logging(db=None, level=None, collection_name=None):
    global log_listener
    level = level or os.getenv("LOG_LEVEL", "INFO")
    root = logging.getLogger()
    root.setLevel(level)
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(stream)

    if collection_name is None:
        collection_name = os.getenv("SERVER_LOGS_COLLECTION", "server_logs")
    for handler in [h for h in root.handlers if isinstance(h, LogQueueHandler)]:
        root.removeHandler(handler)
    stop_log_listener()

    if db is not None and collection_name:
        log_queue = queue.Queue(-1)
        log_listener = QueueListener(log_queue, MongoLogHandler(db[collection_name]), respect_handler_level=True)
        log_listener.start()
        root.addHandler(LogQueueHandler(log_queue))
    return root


atexit.register(stop_log_listener)
