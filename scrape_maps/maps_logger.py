"""
Maps Listing Scraper - Structured Logging Module

JSON-formatted event logging with separate log files for the different
aspects of a crawl run.

Files:
- maps_scrape.log: task flow (pages, listings, queue activity)
- maps_errors.log: errors, CAPTCHAs, terminal failures
- maps_metrics.log: cost reports and run summaries
- maps_operations.log: session rotation, checkpoints, skips
"""

import json
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


class MapsScraperLogger:
    """
    Structured logging system for Maps crawl runs.

    Every message is a JSON object carrying the current context
    (set_context) plus event-specific fields.
    """

    def __init__(self, log_dir: str = "logs"):
        """
        Initialize the logger with separate log files.

        Args:
            log_dir: Directory to store log files (default: logs/)
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.scrape_logger = self._setup_logger("maps_scrape", "maps_scrape.log")
        self.error_logger = self._setup_logger("maps_errors", "maps_errors.log", level=logging.WARNING)
        self.metrics_logger = self._setup_logger("maps_metrics", "maps_metrics.log")
        self.ops_logger = self._setup_logger("maps_operations", "maps_operations.log")

        self.current_context: Dict[str, Any] = {}

    def _setup_logger(
        self,
        name: str,
        filename: str,
        level: int = logging.DEBUG,
        max_bytes: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5
    ) -> logging.Logger:
        """
        Set up a logger with rotating file handler.

        Args:
            name: Logger name
            filename: Log file name
            level: Logging level
            max_bytes: Max file size before rotation
            backup_count: Number of backup files to keep

        Returns:
            Configured logger instance
        """
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.propagate = False

        for handler in list(logger.handlers):
            handler.close()
        logger.handlers = []

        handler = RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(handler)

        return logger

    def set_context(self, **kwargs):
        """
        Set context for subsequent log messages.

        Example:
            logger.set_context(url="https://...", label="DETAIL")
        """
        self.current_context.update(kwargs)

    def clear_context(self):
        """Clear the current logging context."""
        self.current_context = {}

    def _format_log_data(self, message: str, extra_data: Optional[Dict] = None) -> str:
        log_data = {
            "timestamp": datetime.now().isoformat(),
            "message": message,
            **self.current_context
        }

        if extra_data:
            log_data.update(extra_data)

        return json.dumps(log_data, default=str)

    # Task flow

    def run_started(self, parameters: Dict[str, Any]):
        """Log the start of a crawl run."""
        msg = self._format_log_data("Run started", {"parameters": parameters})
        self.ops_logger.info(msg)
        self.scrape_logger.info(msg)

    def task_started(self, url: str, label: str, retry_count: int = 0):
        """Log dequeue of a task."""
        data = {"url": url, "label": label, "retry_count": retry_count}
        self.scrape_logger.info(self._format_log_data("Processing task", data))

    def page_loaded(self, url: str, load_time_ms: int, status: Optional[int] = None):
        """Log successful page load."""
        data = {"url": url, "load_time_ms": load_time_ms, "status": status}
        self.scrape_logger.info(self._format_log_data("Page loaded", data))

    def listings_discovered(self, search_term: str, found: int, enqueued: int):
        """Log the outcome of a SEARCH page."""
        data = {"search_term": search_term, "links_found": found, "enqueued": enqueued}
        self.scrape_logger.info(self._format_log_data("Search results processed", data))

    def listing_emitted(self, name: Optional[str], place_id: Optional[str], total_scraped: int):
        """Log a pushed ListingRecord."""
        data = {"business_name": name, "place_id": place_id, "total_scraped": total_scraped}
        self.scrape_logger.info(self._format_log_data("Listing scraped", data))

    def listing_skipped(self, url: str, reason: str):
        """Log a DETAIL task that ended without emission."""
        data = {"url": url, "reason": reason, "action": "skip"}
        self.ops_logger.info(self._format_log_data("Listing skipped", data))

    # Errors

    def error(self, message: str, error: Exception = None, context: Dict = None):
        """
        Log an error with full context.

        Args:
            message: Error description
            error: Exception object (if available)
            context: Additional context data
        """
        data = {"error_type": "general"}
        if error:
            data.update({
                "exception_type": type(error).__name__,
                "exception_message": str(error)
            })
        if context:
            data.update(context)

        msg = self._format_log_data(message, data)
        self.error_logger.error(msg)
        self.scrape_logger.error(msg)

    def soft_failure(self, field_name: str, error: Exception):
        """Log a non-fatal extraction failure."""
        data = {
            "field_name": field_name,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
        self.error_logger.warning(self._format_log_data("Extraction failed", data))

    def captcha_detected(self, url: str):
        """Log CAPTCHA detection."""
        data = {"url": url, "critical": True}
        self.error_logger.critical(self._format_log_data("CAPTCHA detected", data))

    def task_retry(self, url: str, label: str, retry_count: int, error: Exception):
        """Log a task failure that will be retried."""
        data = {
            "url": url,
            "label": label,
            "retry_count": retry_count,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
        self.error_logger.warning(self._format_log_data("Task failed, retrying", data))

    def request_failed(self, url: str, label: str, retry_count: int, error: Exception):
        """Log a task that exhausted its retries."""
        data = {
            "url": url,
            "label": label,
            "retry_count": retry_count,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
        msg = self._format_log_data("Request failed after retries", data)
        self.error_logger.error(msg)
        self.scrape_logger.error(msg)

    # Operations

    def session_retired(self, session_id: int, reason: str):
        """Log a browser session rotation."""
        data = {"session_id": session_id, "reason": reason}
        self.ops_logger.warning(self._format_log_data("Session retired", data))

    def budget_exhausted(self, where: str, current_cost: float):
        """Log a budget gate that returned False."""
        data = {"where": where, "current_cost": round(current_cost, 4)}
        self.ops_logger.warning(self._format_log_data("Budget limit reached", data))

    def state_checkpoint(self, scraped_items_count: int):
        """Log a RunState persistence."""
        data = {"scraped_items_count": scraped_items_count}
        self.ops_logger.info(self._format_log_data("State checkpoint saved", data))

    # Metrics

    def cost_report(self, summary: Dict[str, Any]):
        """Log the cost estimator summary."""
        self.metrics_logger.info(self._format_log_data("Cost report", summary))

    def run_summary(self, scraped: int, failed: int, duration_seconds: float, current_cost: float):
        """Log end-of-run metrics."""
        data = {
            "total_scraped": scraped,
            "failed": failed,
            "duration_seconds": round(duration_seconds, 2),
            "estimated_cost": round(current_cost, 4)
        }
        self.metrics_logger.info(self._format_log_data("Run summary", data))

    # Utility methods

    def info(self, message: str, extra_data: Dict = None):
        """General info logging."""
        self.scrape_logger.info(self._format_log_data(message, extra_data))

    def warning(self, message: str, extra_data: Dict = None):
        """General warning logging."""
        self.scrape_logger.warning(self._format_log_data(message, extra_data))

    def debug(self, message: str, extra_data: Dict = None):
        """Debug logging."""
        self.scrape_logger.debug(self._format_log_data(message, extra_data))


def get_logger(log_dir: str = "logs") -> MapsScraperLogger:
    """
    Get a MapsScraperLogger instance.

    Args:
        log_dir: Directory for log files

    Returns:
        MapsScraperLogger instance
    """
    return MapsScraperLogger(log_dir=log_dir)
