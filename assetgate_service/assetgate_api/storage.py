"""
Document storage backends.

IpfsBlobStorage pins uploads through the IPFS HTTP API and returns the CID as
the document's content handle. ArweaveArchive pushes a permanent copy through
an HTTP bundler endpoint and reads it back through a gateway.

Network failures surface as Unavailable; unknown handles as NotFound.
"""

import json
import logging
from typing import Dict, Optional

import requests

from assetgate.collaborators import ArchivalStorage, BlobStorage
from assetgate.errors import NotFound, Unavailable

from .util import mask_sensitive

logger = logging.getLogger(__name__)


class IpfsBlobStorage(BlobStorage):
    """
    Docs: https://docs.ipfs.tech/reference/kubo/rpc/
    """

    def __init__(self, api_url: str, timeout: float = 30, session: Optional[requests.Session] = None):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def put(self, data: bytes, filename: Optional[str] = None) -> str:
        try:
            r = self.session.post(
                f"{self.api_url}/api/v0/add",
                params={"pin": "true", "cid-version": "1"},
                files={"file": (filename or "document", data)},
                timeout=self.timeout
            )
            r.raise_for_status()
            cid = r.json()["Hash"]
        except (requests.RequestException, ValueError, KeyError) as e:
            logger.error("IPFS add failed: %s", e)
            raise Unavailable("document storage unavailable") from e

        logger.info("Pinned document %s (%d bytes)", mask_sensitive(cid, 8), len(data))
        return cid

    def get(self, handle: str) -> bytes:
        try:
            r = self.session.post(
                f"{self.api_url}/api/v0/cat",
                params={"arg": handle},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error("IPFS cat failed: %s", e)
            raise Unavailable("document storage unavailable") from e

        if r.status_code == 200:
            return r.content
        # Kubo answers 500 with a JSON message for bad or unknown paths
        message = ""
        try:
            message = str(r.json().get("Message", ""))
        except ValueError:
            pass
        if r.status_code == 404 or "invalid" in message or "not found" in message:
            raise NotFound(f"document {handle} not found")
        raise Unavailable(f"document storage returned {r.status_code}")


class ArweaveArchive(ArchivalStorage):
    """
    Permanent document copies via an Arweave bundler.

    The upload endpoint receives the raw bytes with tags in the
    `X-Arweave-Tags` header and answers `{"id": <tx id>}`.
    """

    def __init__(
        self,
        upload_url: str,
        gateway_url: str = "https://arweave.net",
        timeout: float = 30,
        session: Optional[requests.Session] = None
    ):
        self.upload_url = upload_url
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def archive(self, data: bytes, tags: Optional[Dict[str, str]] = None) -> str:
        headers = {"Content-Type": "application/octet-stream"}
        if tags:
            headers["X-Arweave-Tags"] = json.dumps(
                [{"name": k, "value": v} for k, v in sorted(tags.items())]
            )
        try:
            r = self.session.post(self.upload_url, data=data, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            tx_id = r.json()["id"]
        except (requests.RequestException, ValueError, KeyError) as e:
            logger.error("Arweave upload failed: %s", e)
            raise Unavailable("archival storage unavailable") from e
        return tx_id

    def fetch(self, archival_ref: str) -> bytes:
        try:
            r = self.session.get(f"{self.gateway_url}/{archival_ref}", timeout=self.timeout)
        except requests.RequestException as e:
            raise Unavailable("archival gateway unavailable") from e
        if r.status_code == 404:
            raise NotFound(f"archive {archival_ref} not found")
        if r.status_code != 200:
            raise Unavailable(f"archival gateway returned {r.status_code}")
        return r.content
