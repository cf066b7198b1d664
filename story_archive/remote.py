"""
Client for the archive directory-listing service.

The service answers ``?action=list-dates``, ``?action=list-stories&date=``
and ``?action=get-file&path=``; only story folders are listed, so remote
loads carry no avatars or profile snapshots.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from tqdm import tqdm
from urllib3.util.retry import Retry

from .logger import verbose, warning
from .models import FileEntry


DEFAULT_ROOT_NAME = "AutoExport"


class ListingClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(
                pool_connections=4,
                pool_maxsize=8,
                max_retries=Retry(total=3, backoff_factor=0.5, status_forcelist=(502, 503, 504)),
            )
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def _get_json(self, params: Dict[str, str]) -> Any:
        resp = self.session.get(self.base_url, params=params, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, dict) and "error" in data:
            raise ValueError(f"Listing service error: {data['error']}")
        return data

    def list_dates(self) -> List[str]:
        return [str(d) for d in self._get_json({"action": "list-dates"})]

    def list_stories(self, date: str) -> List[Dict[str, str]]:
        return list(self._get_json({"action": "list-stories", "date": date}))

    def open_file(self, path: str) -> BinaryIO:
        resp = self.session.get(
            self.base_url,
            params={"action": "get-file", "path": path},
            stream=True,
            timeout=self.timeout,
        )
        resp.raise_for_status()
        resp.raw.decode_content = True
        return resp.raw

    def close(self) -> None:
        self.session.close()


@dataclass(frozen=True)
class RemoteContent:
    client: ListingClient = field(compare=False, repr=False)
    path: str = ""

    @property
    def local_path(self) -> Optional[Path]:
        return None

    def open(self) -> BinaryIO:
        return self.client.open_file(self.path)


class RemoteArchiveSource:
    def __init__(self, client: ListingClient, root_name: str = DEFAULT_ROOT_NAME) -> None:
        self.client = client
        self.root_name = root_name

    def files(self) -> List[FileEntry]:
        out: List[FileEntry] = []
        dates = self.client.list_dates()
        for date in tqdm(dates, desc="Listing dates", unit="date", disable=len(dates) < 2):
            try:
                stories = self.client.list_stories(date)
            except (requests.RequestException, ValueError) as e:
                warning(f"Could not list stories for {date}: {e}")
                continue
            for story in stories:
                path = story.get("path")
                if not path:
                    continue
                out.append(
                    FileEntry(
                        f"{self.root_name}/{path}",
                        RemoteContent(self.client, path),
                        int(story.get("size", 0) or 0),
                    )
                )
        verbose(f"listed {len(out)} remote files across {len(dates)} dates")
        return out


def is_remote(location: str) -> bool:
    return location.startswith(("http://", "https://"))

