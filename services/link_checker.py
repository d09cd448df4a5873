import asyncio
import logging
from collections import Counter
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Iterable, Optional, Protocol, Tuple

import httpx

from core.model import Link
from core.utils import AppConstants

"""
リンクの生存確認。
- `LinkChecker` : 同時実行数を制限したワーカープールで URL を確認し、結果を逐次返す
- `HttpxFetcher` : httpx によるネットワーク取得（不透明／透過の2種類）
"""

logger = logging.getLogger(__name__)


class StatusKind(Enum):
    UNCHECKED = "unchecked"
    OK = "ok"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    HTTP_ERROR = "http_error"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class LinkStatus:
    kind: StatusKind
    code: Optional[int] = None

    @property
    def is_failure(self) -> bool:
        """再チェック対象かどうか（未チェックと OK 以外）"""
        return self.kind not in (StatusKind.UNCHECKED, StatusKind.OK)

    @property
    def label(self) -> str:
        if self.kind is StatusKind.HTTP_ERROR:
            return str(self.code)
        return _LABELS[self.kind]


_LABELS = {
    StatusKind.UNCHECKED: "-",
    StatusKind.OK: "OK",
    StatusKind.TIMEOUT: "TIME",
    StatusKind.NOT_FOUND: "404",
    StatusKind.BLOCKED: "BLOCKED",
}

UNCHECKED = LinkStatus(StatusKind.UNCHECKED)
OK = LinkStatus(StatusKind.OK)
TIMEOUT = LinkStatus(StatusKind.TIMEOUT)
NOT_FOUND = LinkStatus(StatusKind.NOT_FOUND)
BLOCKED = LinkStatus(StatusKind.BLOCKED)


def http_error(code: int) -> LinkStatus:
    return LinkStatus(StatusKind.HTTP_ERROR, code)


class ProbeTimeout(Exception):
    """A probe attempt ran out of time."""


class ProbeFailed(Exception):
    """A probe attempt failed for any reason other than its timeout."""


class Fetcher(Protocol):
    async def fetch_opaque(self, url: str, timeout: float) -> None:
        """Succeed if the URL answers at all; the status code is not observed."""

    async def fetch_status(self, url: str, timeout: float) -> int:
        """Return the response status code."""


class HttpxFetcher:
    """
    httpx.AsyncClient を使ったネットワーク取得。

    - 不透明な取得: GET（リダイレクト追従）。応答が返れば成功とし、ステータスと本文は見ない
    - 透過的な取得: HEAD（リダイレクト追従）。ステータスコードを返す
    """

    _ERRORS = (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError)

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def fetch_opaque(self, url: str, timeout: float) -> None:
        try:
            async with self.client.stream("GET", url, timeout=timeout):
                pass
        except httpx.TimeoutException as e:
            raise ProbeTimeout(str(e) or type(e).__name__) from e
        except self._ERRORS as e:
            raise ProbeFailed(f"{type(e).__name__}: {e}") from e

    async def fetch_status(self, url: str, timeout: float) -> int:
        try:
            response = await self.client.head(url, timeout=timeout)
        except httpx.TimeoutException as e:
            raise ProbeTimeout(str(e) or type(e).__name__) from e
        except self._ERRORS as e:
            raise ProbeFailed(f"{type(e).__name__}: {e}") from e
        return response.status_code


@asynccontextmanager
async def open_fetcher(user_agent: str = AppConstants.USER_AGENT,
                       proxy: Optional[str] = None) -> AsyncIterator[HttpxFetcher]:
    """HttpxFetcher を作成し、終了時にクライアントを閉じる。"""
    async with httpx.AsyncClient(
        follow_redirects=True,
        headers={'User-Agent': user_agent},
        proxy=proxy,
    ) as client:
        yield HttpxFetcher(client)


@dataclass
class CheckSummary:
    total: int = 0
    processed: int = 0
    counts: Counter = field(default_factory=Counter)

    def record(self, status: LinkStatus) -> None:
        self.processed += 1
        self.counts[status.kind] += 1

    @property
    def failed(self) -> int:
        return sum(n for kind, n in self.counts.items() if LinkStatus(kind).is_failure)


@dataclass
class CheckReport:
    statuses: Dict[str, LinkStatus]
    summary: CheckSummary

    @property
    def failed_ids(self) -> set:
        return {link_id for link_id, status in self.statuses.items() if status.is_failure}


_DONE = object()


class LinkChecker:
    """
    Bounded-concurrency link checker.

    `concurrency` workers pull links from one FIFO queue; each worker finishes a
    link (primary probe, then the fallback probe if needed) before taking the next.
    The checker keeps no state between runs.
    """

    def __init__(self, fetcher: Fetcher,
                 concurrency: int = AppConstants.DEFAULT_CONCURRENCY,
                 primary_timeout: float = AppConstants.PRIMARY_TIMEOUT,
                 secondary_timeout: float = AppConstants.SECONDARY_TIMEOUT):
        if concurrency < AppConstants.MIN_CONCURRENCY:
            raise ValueError(f"concurrency must be >= {AppConstants.MIN_CONCURRENCY}")
        self.fetcher = fetcher
        self.concurrency = concurrency
        self.primary_timeout = primary_timeout
        self.secondary_timeout = secondary_timeout

    async def classify(self, url: str) -> LinkStatus:
        """
        1つのURLを判定する。

        1. 不透明な取得が成功すれば OK（ステータスコードは分からない）
        2. 不透明な取得がタイムアウトすれば TIMEOUT（フォールバックしない）
        3. それ以外の失敗では透過的な取得を試し、404 / 2xx / その他 / 失敗 で分類する
        """
        try:
            await asyncio.wait_for(self.fetcher.fetch_opaque(url, self.primary_timeout),
                                   self.primary_timeout)
            return OK
        except (ProbeTimeout, asyncio.TimeoutError):
            logger.info("Timeout for %s", url)
            return TIMEOUT
        except ProbeFailed as e:
            logger.debug("Primary probe failed for %s: %s", url, e)

        try:
            code = await asyncio.wait_for(self.fetcher.fetch_status(url, self.secondary_timeout),
                                          self.secondary_timeout)
        except (ProbeTimeout, ProbeFailed, asyncio.TimeoutError) as e:
            logger.info("Blocked or unreachable: %s (%s)", url, type(e).__name__)
            return BLOCKED

        if code == 404:
            return NOT_FOUND
        if 200 <= code < 300:
            return OK
        logger.info("HTTP %d for %s", code, url)
        return http_error(code)

    async def _check_one(self, link: Link) -> LinkStatus:
        if not link.url:
            return UNCHECKED
        try:
            return await self.classify(link.url)
        except Exception:
            # 想定外の例外もプールの外には出さない
            logger.exception("Unexpected error while checking %s", link.url)
            return BLOCKED

    async def iter_results(self, links: Iterable[Link],
                           summary: Optional[CheckSummary] = None) -> AsyncIterator[Tuple[str, LinkStatus]]:
        """
        リンクを確認し、完了した順に (id, LinkStatus) を返す。

        イテレータを途中で閉じる、または実行中のタスクをキャンセルすると、
        実行中のプローブもすべてキャンセルされる。

        Args:
            links: 確認するリンク（この順にキューから取り出される）
            summary: 進捗と集計を書き込む CheckSummary（省略可）
        """
        pending: asyncio.Queue = asyncio.Queue()
        for link in links:
            pending.put_nowait(link)
        if summary is not None:
            summary.total = pending.qsize()
        results: asyncio.Queue = asyncio.Queue()

        async def worker() -> None:
            while True:
                try:
                    link = pending.get_nowait()
                except asyncio.QueueEmpty:
                    return
                status = await self._check_one(link)
                if summary is not None:
                    summary.record(status)
                results.put_nowait((link.id, status))

        workers = [asyncio.ensure_future(worker()) for _ in range(self.concurrency)]

        async def supervise() -> None:
            try:
                await asyncio.gather(*workers)
            finally:
                results.put_nowait(_DONE)

        supervisor = asyncio.ensure_future(supervise())
        try:
            while True:
                item = await results.get()
                if item is _DONE:
                    break
                yield item
            await supervisor
        finally:
            for task in (*workers, supervisor):
                if not task.done():
                    task.cancel()
            await asyncio.gather(*workers, supervisor, return_exceptions=True)

    async def run(self, links: Iterable[Link],
                  on_result: Optional[Callable[[str, LinkStatus], None]] = None) -> CheckReport:
        """Check every link and return all statuses plus the aggregate counts."""
        summary = CheckSummary()
        statuses: Dict[str, LinkStatus] = {}
        async with aclosing(self.iter_results(links, summary)) as results:
            async for link_id, status in results:
                statuses[link_id] = status
                if on_result:
                    on_result(link_id, status)
        logger.info("Checked %d links: %d failed", summary.processed, summary.failed)
        return CheckReport(statuses=statuses, summary=summary)
