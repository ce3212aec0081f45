from __future__ import annotations

import hashlib
import json
import logging
import time
import urllib.error
import urllib.request
import uuid
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class ScanError(RuntimeError):
    pass


@dataclass(frozen=True)
class ScanResult:
    status: str  # clean | infected | skipped
    malicious: int = 0
    suspicious: int = 0
    harmless: int = 0
    undetected: int = 0
    scan_id: str | None = None

    @property
    def safe(self) -> bool:
        return self.status != "infected"


class Scanner:
    def scan_file(self, data: bytes, filename: str) -> ScanResult:
        raise NotImplementedError


class PassThroughScanner(Scanner):
    """Used when no scanning service is configured; files are stored as 'skipped'."""

    def scan_file(self, data: bytes, filename: str) -> ScanResult:
        return ScanResult(status="skipped")


@dataclass(frozen=True)
class VirusTotalScanner(Scanner):
    api_key: str
    base_url: str = "https://www.virustotal.com/api/v3"
    timeout_seconds: int = 60
    poll_attempts: int = 10
    poll_interval_seconds: float = 3.0

    def _request(self, req: urllib.request.Request, *, retries: int = 3) -> dict[str, Any] | None:
        req.add_header("x-apikey", self.api_key)
        req.add_header("Accept", "application/json")
        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    return json.loads(resp.read().decode("utf-8"))
            except urllib.error.HTTPError as e:
                if e.code == 404:
                    return None
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = e
                    continue
                body = e.read().decode("utf-8", errors="ignore")
                raise ScanError(f"HTTP {e.code} from VirusTotal: {body[:300]}") from e
            except (urllib.error.URLError, TimeoutError) as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
        raise ScanError(f"VirusTotal request failed after retries: {last_err}")

    @staticmethod
    def _result(stats: dict[str, Any], scan_id: str | None) -> ScanResult:
        malicious = int(stats.get("malicious") or 0)
        suspicious = int(stats.get("suspicious") or 0)
        return ScanResult(
            status="infected" if malicious or suspicious else "clean",
            malicious=malicious,
            suspicious=suspicious,
            harmless=int(stats.get("harmless") or 0),
            undetected=int(stats.get("undetected") or 0),
            scan_id=scan_id,
        )

    def lookup_hash(self, sha256: str) -> ScanResult | None:
        j = self._request(urllib.request.Request(f"{self.base_url}/files/{sha256}", method="GET"))
        if not j:
            return None
        stats = ((j.get("data") or {}).get("attributes") or {}).get("last_analysis_stats") or {}
        return self._result(stats, sha256) if stats else None

    def _upload(self, data: bytes, filename: str) -> str:
        boundary = uuid.uuid4().hex
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                f'Content-Disposition: form-data; name="file"; filename="{filename}"\r\n'.encode(),
                b"Content-Type: application/octet-stream\r\n\r\n",
                data,
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )
        req = urllib.request.Request(f"{self.base_url}/files", data=body, method="POST")
        req.add_header("Content-Type", f"multipart/form-data; boundary={boundary}")
        j = self._request(req) or {}
        analysis_id = (j.get("data") or {}).get("id")
        if not analysis_id:
            raise ScanError("VirusTotal upload returned no analysis id")
        return analysis_id

    def scan_file(self, data: bytes, filename: str) -> ScanResult:
        sha256 = hashlib.sha256(data).hexdigest()
        known = self.lookup_hash(sha256)
        if known is not None:
            logger.info("VirusTotal hash hit for %s: %s", filename, known.status)
            return known

        logger.info("Uploading %s (%d bytes) to VirusTotal", filename, len(data))
        analysis_id = self._upload(data, filename)
        for _ in range(self.poll_attempts):
            j = self._request(urllib.request.Request(f"{self.base_url}/analyses/{analysis_id}", method="GET")) or {}
            attrs = (j.get("data") or {}).get("attributes") or {}
            if attrs.get("status") == "completed":
                return self._result(attrs.get("stats") or {}, analysis_id)
            time.sleep(self.poll_interval_seconds)
        raise ScanError(f"VirusTotal analysis {analysis_id} did not complete in time")


def scanner_from_config(config: dict) -> Scanner:
    api_key = (config.get("VIRUSTOTAL_API_KEY") or "").strip()
    if not api_key:
        return PassThroughScanner()
    return VirusTotalScanner(api_key=api_key)
