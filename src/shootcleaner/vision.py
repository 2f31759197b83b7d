"""OpenAI Batch API client for culling analysis."""

import json
import logging
import os
import tempfile
import time
from typing import Any

from dotenv import load_dotenv
from openai import OpenAI

from shootcleaner.engine import CancelToken

logger = logging.getLogger(__name__)

# Terminal batch states other than "completed"
FAILED_STATES = {"failed", "expired", "cancelled", "canceled"}


class BatchCancelledError(Exception):
    """Raised when polling stops because the caller cancelled."""


def _get_value(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _read_binary_response(content: Any) -> str:
    if hasattr(content, "read"):
        data = content.read()
    elif isinstance(content, (bytes, bytearray)):
        data = content
    else:
        data = getattr(content, "content", content)
    if isinstance(data, str):
        return data
    return data.decode("utf-8")


def _extract_text(body: dict[str, Any]) -> str | None:
    choices = body.get("choices", [])
    if not choices:
        return None
    content = choices[0].get("message", {}).get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                return part.get("text")
    return None


def normalize_result_line(record: dict[str, Any]) -> dict[str, Any]:
    """Turn one line of the batch output file into a ``custom_id``/``result`` pair."""
    custom_id = record.get("custom_id", "unknown")
    response = record.get("response") or {}

    if response.get("status_code") == 200:
        text_content = _extract_text(response.get("body", {}))
        result = {
            "type": "succeeded" if text_content else "errored",
            "message": {"content": [{"type": "text", "text": text_content or ""}]},
        }
    else:
        result = {
            "type": "errored",
            "error": record.get("error") or response.get("body"),
        }

    return {"custom_id": custom_id, "result": result}


class VisionBatchClient:
    """Submits culling requests to the OpenAI Batch API and collects replies."""

    def __init__(
        self,
        api_key: str | None = None,
        endpoint: str = "/v1/chat/completions",
        completion_window: str = "24h",
        client: OpenAI | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            endpoint: Batch endpoint to target
            completion_window: OpenAI completion window
            client: Pre-built OpenAI client (skips key lookup)

        Raises:
            ValueError: If no API key is provided or found in environment
        """
        if client is None:
            load_dotenv()
            if api_key is None:
                api_key = os.environ.get("OPENAI_API_KEY")
            if not api_key:
                raise ValueError(
                    "API key required. Set OPENAI_API_KEY environment variable "
                    "or pass api_key parameter."
                )
            client = OpenAI(api_key=api_key)

        self.client = client
        self.endpoint = endpoint
        self.completion_window = completion_window
        logger.info("Vision batch client initialized")

    def submit_batch(self, requests: list[dict[str, Any]]) -> str:
        """Upload requests as JSONL and start a batch.

        Returns:
            Batch ID for polling

        Raises:
            ValueError: If requests list is empty
        """
        if not requests:
            raise ValueError("Cannot submit empty batch")

        logger.info(f"Submitting batch with {len(requests)} requests")
        temp_path = None

        try:
            with tempfile.NamedTemporaryFile(
                "w", suffix=".jsonl", delete=False, encoding="utf-8"
            ) as handle:
                for request in requests:
                    handle.write(json.dumps(request))
                    handle.write("\n")
                temp_path = handle.name

            with open(temp_path, "rb") as handle:
                input_file = self.client.files.create(file=handle, purpose="batch")

            batch = self.client.batches.create(
                input_file_id=input_file.id,
                endpoint=self.endpoint,
                completion_window=self.completion_window,
            )

            logger.info(f"Batch submitted successfully: {batch.id}")
            return batch.id

        except Exception as e:
            logger.error(f"Failed to submit batch: {e}")
            raise

        finally:
            if temp_path:
                try:
                    os.unlink(temp_path)
                except OSError as e:
                    logger.warning(f"Failed to remove temp file {temp_path}: {e}")

    def get_batch_status(self, batch_id: str) -> dict[str, Any]:
        """Get status and request counts of a batch."""
        batch = self.client.batches.retrieve(batch_id)
        counts = _get_value(batch, "request_counts", {})
        total = _get_value(counts, "total", 0) or 0
        completed = _get_value(counts, "completed", 0) or 0
        failed = _get_value(counts, "failed", 0) or 0

        return {
            "id": _get_value(batch, "id", batch_id),
            "status": _get_value(batch, "status", "in_progress"),
            "request_counts": {
                "total": total,
                "processing": max(total - completed - failed, 0),
                "succeeded": completed,
                "errored": failed,
            },
            "output_file_id": _get_value(batch, "output_file_id"),
            "error_file_id": _get_value(batch, "error_file_id"),
        }

    def cancel_batch(self, batch_id: str) -> None:
        logger.info(f"Cancelling batch {batch_id}")
        self.client.batches.cancel(batch_id)

    def poll_batch(
        self,
        batch_id: str,
        poll_interval: int = 30,
        timeout: int = 86400,
        cancel: CancelToken | None = None,
    ) -> dict[str, Any]:
        """Poll a batch until it completes.

        Args:
            batch_id: Batch ID to poll
            poll_interval: Seconds between status checks
            timeout: Maximum seconds to wait
            cancel: Token checked before every status check

        Returns:
            Final batch status dictionary

        Raises:
            TimeoutError: If batch doesn't complete within timeout
            BatchCancelledError: If ``cancel`` was set while waiting
            RuntimeError: If the batch ends in a failed state
        """
        logger.info(f"Polling batch {batch_id} (interval={poll_interval}s)")

        start_time = time.time()
        last_log_time = start_time

        while True:
            if cancel is not None and cancel.cancelled:
                try:
                    self.cancel_batch(batch_id)
                except Exception as e:
                    logger.warning(f"Failed to cancel batch {batch_id}: {e}")
                raise BatchCancelledError(f"Polling of batch {batch_id} cancelled")

            if time.time() - start_time > timeout:
                raise TimeoutError(
                    f"Batch {batch_id} did not complete within {timeout}s"
                )

            status = self.get_batch_status(batch_id)
            provider_status = status["status"]

            if time.time() - last_log_time >= 300:
                counts = status["request_counts"]
                logger.info(
                    f"Batch progress: "
                    f"{counts['succeeded']} succeeded, "
                    f"{counts['processing']} processing, "
                    f"{counts['errored']} errored"
                )
                last_log_time = time.time()

            if provider_status == "completed":
                counts = status["request_counts"]
                logger.info(
                    f"Batch completed: {counts['succeeded']} succeeded, "
                    f"{counts['errored']} errored"
                )
                return status

            if provider_status in FAILED_STATES:
                raise RuntimeError(f"Batch failed with status: {provider_status}")

            logger.debug(
                f"Batch still processing ({provider_status}), "
                f"waiting {poll_interval}s..."
            )
            time.sleep(poll_interval)

    def get_batch_results(self, batch_id: str) -> list[dict[str, Any]]:
        """Download and normalise the results of a completed batch.

        Raises:
            ValueError: If the batch is not completed or has no output file
        """
        logger.info(f"Retrieving results for batch {batch_id}")

        status = self.get_batch_status(batch_id)
        if status["status"] != "completed":
            raise ValueError(f"Batch not completed: {status['status']}")

        output_file_id = status.get("output_file_id")
        if not output_file_id:
            raise ValueError("No output_file_id available for batch")

        raw_text = _read_binary_response(self.client.files.content(output_file_id))

        results = [
            normalize_result_line(json.loads(line))
            for line in raw_text.splitlines()
            if line.strip()
        ]

        logger.info(f"Retrieved {len(results)} results")
        return results
