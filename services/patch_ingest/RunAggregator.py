"""Run-wide statistics and error aggregation for one ingest run."""

import json
import re
from datetime import datetime, timezone
from typing import Any

from shared.clients.ClientError import ClientError
from shared.helper.HelperConfig import HelperConfig
from shared.models.result import RunStats

HTTP_STATUS_PATTERN = re.compile(
    r"(?:status code|HTTP|status):\s*(\d{3})"
    r"|HTTP\s+(\d{3})"
    r"|(\d{3})\s+(?:Bad Request|Unauthorized|Forbidden|Not Found|Timeout|Rate Limit"
    r"|Internal Server Error|Bad Gateway|Service Unavailable|Gateway Timeout)",
    re.IGNORECASE,
)
STEP_FAILURE_PATTERN = re.compile(r"(\w+) failed: (.+)", re.DOTALL)

HTTP_STATUS_NAMES = {
    400: "Bad Request (400)",
    401: "Unauthorized (401)",
    403: "Forbidden (403)",
    404: "Not Found (404)",
    408: "Request Timeout (408)",
    429: "Rate Limit (429)",
    500: "Internal Server Error (500)",
    502: "Bad Gateway (502)",
    503: "Service Unavailable (503)",
    504: "Gateway Timeout (504)",
}
NETWORK_MARKERS = ("fetch failed", "econnrefused", "enotfound", "connecterror", "connection refused", "name or service not known")
TIMEOUT_MARKERS = ("timeout", "etimedout", "timed out")

MAX_KEY_LENGTH = 80
MAX_DECRYPT_CAUSE_LENGTH = 60
REPORT_LIMIT = 10


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _is_decrypt_step(step: str) -> bool:
    return "decrypt" in step.lower()


def status_label(status: int) -> str:
    """Map an HTTP status code to its aggregation key, e.g. 429 -> "HTTP Rate Limit (429)"."""
    if status in HTTP_STATUS_NAMES:
        return f"HTTP {HTTP_STATUS_NAMES[status]}"
    if 400 <= status < 500:
        return f"HTTP Client Error ({status})"
    if 500 <= status < 600:
        return f"HTTP Server Error ({status})"
    if 100 <= status < 200:
        return f"HTTP Informational ({status})"
    return f"HTTP Status ({status})"


def _decrypt_label(cause: str) -> str:
    lowered = cause.lower()
    if "approv" in lowered:
        return "Decryption Failed: Approval Error"
    if "sessionkey" in lowered or "session key" in lowered:
        return "Decryption Failed: Session Key Error"
    return f"Decryption Failed: {_truncate(cause, MAX_DECRYPT_CAUSE_LENGTH)}"


def normalize_error(error: str | BaseException) -> str:
    """Reduce an error to a stable aggregation key.

    ClientErrors carrying a status code are classified from their fields.
    Text is matched against HTTP status phrases first, then against known
    failure families; "<step> failed: <cause>" recurses into the cause.
    Anything else is truncated to 80 characters.

    Args:
        error (str | BaseException): The error message or exception.

    Returns:
        str: The aggregation key.
    """
    if isinstance(error, ClientError):
        if error.status_code is not None:
            return status_label(error.status_code)
        if _is_decrypt_step(error.step):
            return _decrypt_label(error.cause)
    message = str(error)

    match = HTTP_STATUS_PATTERN.search(message)
    if match:
        status = int(next(group for group in match.groups() if group))
        if 100 <= status < 600:
            return status_label(status)
        return _truncate(message, MAX_KEY_LENGTH)

    lowered = message.lower()
    if any(marker in lowered for marker in NETWORK_MARKERS):
        return "Network/Connection Error"
    if any(marker in lowered for marker in TIMEOUT_MARKERS):
        return "Timeout Error"
    if "approve failed" in lowered or "approval failed" in lowered:
        return "Approval Failed"
    if "sessionkey.create" in lowered or "session key creation" in lowered:
        return "Session Key Creation Failed"

    step_match = STEP_FAILURE_PATTERN.search(message)
    if step_match:
        step, cause = step_match.group(1), step_match.group(2)
        if _is_decrypt_step(step):
            return _decrypt_label(cause)
        if cause != message:
            return normalize_error(cause)

    if "Failed to fetch" in message:
        return "Fetch Operation Failed"
    return _truncate(message, MAX_KEY_LENGTH)


class RunAggregator:
    """
    Accumulates the counters, errors and warnings of one ingest run and
    renders the final report.

    Mutated only from the event loop thread between awaits, so it needs no lock.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self.stats = RunStats()
        self.error_counts: dict[str, int] = {}
        self.sample_errors: list[str] = []
        self.warnings: list[str] = []
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def start(self) -> None:
        self.start_time = datetime.now(timezone.utc)

    def end(self) -> None:
        self.end_time = datetime.now(timezone.utc)

    ##########################################
    ################ RECORD ##################
    ##########################################

    def record_patch_selection(self, original: int, selected: int) -> None:
        self.stats.original_patch_count += original
        self.stats.selected_patch_count += selected

    def record_fetch_result(self, ok: bool) -> None:
        if ok:
            self.stats.fetch_success += 1
        else:
            self.stats.fetch_failed += 1

    def record_patch_processed(self, ok: bool, messages: int = 0, embeddings: int = 0, vectors: int = 0) -> None:
        """Count one finished patch. Message counts are only added for successful patches."""
        if ok:
            self.stats.processed_patches += 1
            self.stats.total_messages += messages
            self.stats.successful_embeddings += embeddings
            self.stats.successful_vector_storages += vectors
        else:
            self.stats.failed_patches += 1

    def record_error(self, error: str | BaseException) -> str:
        """Count an error under its normalized key. Only the first raw message per key is kept.

        Args:
            error (str | BaseException): The error message or exception.

        Returns:
            str: The aggregation key the error was counted under.
        """
        key = normalize_error(error)
        self.error_counts[key] = self.error_counts.get(key, 0) + 1
        if self.error_counts[key] == 1:
            self.sample_errors.append(str(error))
        return key

    def record_warning(self, message: str) -> None:
        self.warnings.append(message)

    ##########################################
    ################ SUMMARY #################
    ##########################################

    def generate_summary(self) -> dict[str, Any]:
        """Build the JSON-serialisable run summary.

        Returns:
            dict[str, Any]: Sections "execution", "patches", "messages" and "issues".
        """
        stats = self.stats
        duration = None
        if self.start_time and self.end_time:
            duration = round((self.end_time - self.start_time).total_seconds(), 2)

        fetched_total = stats.fetch_success + stats.fetch_failed
        finished_total = stats.processed_patches + stats.failed_patches
        fetch_rate = round(stats.fetch_success / fetched_total * 100, 1) if fetched_total else 0.0
        processing_rate = round(stats.processed_patches / finished_total * 100, 1) if finished_total else 0.0

        breakdown = sorted(self.error_counts.items(), key=lambda item: item[1], reverse=True)[:REPORT_LIMIT]
        return {
            "execution": {
                "duration_seconds": duration,
                "start_time": self.start_time.isoformat() if self.start_time else None,
                "end_time": self.end_time.isoformat() if self.end_time else None,
            },
            "patches": {
                "original_total": stats.original_patch_count or fetched_total,
                "selected_for_processing": stats.selected_patch_count or fetched_total,
                "total": fetched_total,
                "fetched_successfully": stats.fetch_success,
                "fetch_failed": stats.fetch_failed,
                "fetch_success_rate_percent": fetch_rate,
                "processed_successfully": stats.processed_patches,
                "processing_failed": stats.failed_patches,
                "processing_success_rate_percent": processing_rate,
            },
            "messages": {
                "total_processed": stats.total_messages,
                "successful_embeddings": stats.successful_embeddings,
                "successful_vector_storages": stats.successful_vector_storages,
            },
            "issues": {
                "warnings_count": len(self.warnings),
                "errors_count": sum(self.error_counts.values()),
                "unique_errors_count": len(self.sample_errors),
                "error_breakdown": [{"error": key, "count": count} for key, count in breakdown],
                "warnings": self.warnings[:REPORT_LIMIT],
                "sample_errors": self.sample_errors[:REPORT_LIMIT],
            },
        }

    def render(self, sink) -> dict[str, Any]:
        """Write the human readable report and the JSON summary to a sink.

        Args:
            sink (ColorLogger): Logger that accepts color=; get_log_file_path() is used when present.

        Returns:
            dict[str, Any]: The rendered summary.
        """
        summary = self.generate_summary()
        execution, patches, messages, issues = (
            summary["execution"], summary["patches"], summary["messages"], summary["issues"]
        )

        sink.info("=" * 80, color="cyan")
        sink.info("EXECUTION SUMMARY REPORT", color="cyan")
        sink.info("=" * 80, color="cyan")
        duration = execution["duration_seconds"]
        sink.info("Execution Time: %s", f"{duration}s" if duration is not None else "N/A")
        sink.info("   Started: %s", execution["start_time"])
        sink.info("   Ended: %s", execution["end_time"])

        sink.info("Patch Processing:")
        if patches["original_total"] > patches["selected_for_processing"]:
            sink.info("   Original Total Patches: %d", patches["original_total"])
            sink.info("   Selected for Processing: %d", patches["selected_for_processing"])
            sink.info("   Skipped: %d", patches["original_total"] - patches["selected_for_processing"])
        sink.info("   Total Patches Processed: %d", patches["total"])
        sink.info("   Fetched Successfully: %d", patches["fetched_successfully"])
        sink.info("   Fetch Failed: %d", patches["fetch_failed"])
        sink.info("   Fetch Success Rate: %s%%", patches["fetch_success_rate_percent"])
        sink.info("   Processed Successfully: %d", patches["processed_successfully"])
        sink.info("   Processing Failed: %d", patches["processing_failed"])
        sink.info("   Processing Success Rate: %s%%", patches["processing_success_rate_percent"])

        sink.info("Message Processing:")
        sink.info("   Total Messages: %d", messages["total_processed"])
        sink.info("   Successful Embeddings: %d", messages["successful_embeddings"])
        sink.info("   Successful Vector Storages: %d", messages["successful_vector_storages"])

        if issues["warnings_count"] or issues["errors_count"]:
            sink.info("Issues:")
            sink.info("   Warnings: %d", issues["warnings_count"], color="yellow")
            sink.info("   Total Errors: %d (%d unique types)", issues["errors_count"], issues["unique_errors_count"])
            if issues["error_breakdown"]:
                sink.info("   Error Breakdown (top %d):", len(issues["error_breakdown"]))
                for i, item in enumerate(issues["error_breakdown"], start=1):
                    plural = "s" if item["count"] > 1 else ""
                    sink.error("     %d. %s (occurred %d time%s)", i, item["error"], item["count"], plural, color="red")
            for i, warning in enumerate(issues["warnings"], start=1):
                sink.info("     warning %d. %s", i, warning)
            if issues["errors_count"] > REPORT_LIMIT:
                sink.info("   Note: Showing aggregated error types. See log file for complete details.")

        log_file = sink.get_log_file_path() if hasattr(sink, "get_log_file_path") else None
        sink.info("Detailed logs saved to: %s", log_file or "N/A")
        sink.info("=" * 80)

        sink.info("===SUMMARY_JSON_START===")
        sink.info("%s", json.dumps(summary, indent=2, ensure_ascii=False))
        sink.info("===SUMMARY_JSON_END===")
        return summary
