import sys
import os
import argparse
import asyncio
import logging
from logging.handlers import RotatingFileHandler

from tqdm import tqdm

# Ensure the core/services modules are importable
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from core.utils import AppConstants
from core.model import count_folders
from core.storage import ConfigManager, SUPPORTED_FORMATS
from services.link_checker import LinkChecker, StatusKind, open_fetcher
from services.session import BookmarkLoadError, BookmarkSession

logger = logging.getLogger("bookmark_sweeper")


def setup_logging(verbose: bool = False) -> None:
    """ファイル(INFO)とコンソール(WARNING)にログを出力する。"""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    log_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if root.hasHandlers():
        root.handlers.clear()

    file_handler = RotatingFileHandler(AppConstants.LOG_FILE, maxBytes=AppConstants.LOG_MAX_BYTES,
                                       backupCount=AppConstants.LOG_BACKUP_COUNT, encoding='utf-8')
    file_handler.setFormatter(log_formatter)
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    console_handler.setLevel(logging.WARNING)

    root.addHandler(file_handler)
    root.addHandler(console_handler)
    # httpx はリクエストごとに INFO を出すので抑える
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check bookmark links and save a pruned copy of a bookmark export (JSON or HTML).")
    parser.add_argument("input", help="Bookmark export to load (browser JSON or Netscape HTML)")
    parser.add_argument("--check", action="store_true", help="Check every link")
    parser.add_argument("--recheck", action="store_true",
                        help="After --check, check the failed links once more")
    parser.add_argument("--remove-failed", action="store_true",
                        help="Remove every link that is still failing after the check")
    parser.add_argument("--remove", nargs="+", default=[], metavar="ID",
                        help="Ids of links to remove")
    parser.add_argument("--format", choices=SUPPORTED_FORMATS,
                        help="Output format (default: same as the input)")
    parser.add_argument("-o", "--output", help="Output file (default: Bookmarks_<YYYYMMDD>.<ext>)")
    parser.add_argument("--concurrency", type=int, help="Number of links checked at the same time")
    parser.add_argument("--config", default="config.ini", help="Path to config.ini")
    parser.add_argument("--no-proxy", action="store_true", help="Ignore proxy settings")
    parser.add_argument("--no-save", action="store_true", help="Only report, do not write a file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


async def run_checks(session: BookmarkSession, config: ConfigManager, args) -> None:
    concurrency = args.concurrency if args.concurrency else config.get_concurrency()
    proxy = config.get_proxy_for_httpx(use_proxy=not args.no_proxy)
    async with open_fetcher(config.get_user_agent(), proxy) as fetcher:
        checker = LinkChecker(
            fetcher,
            concurrency=max(AppConstants.MIN_CONCURRENCY, concurrency),
            primary_timeout=config.get_primary_timeout(),
            secondary_timeout=config.get_secondary_timeout(),
        )
        links = session.links()
        with tqdm(total=len(links), desc="Checking links", unit="link") as bar:
            await session.check_all(checker, lambda link_id, status: bar.update(1))
        if args.recheck and session.failed_ids:
            with tqdm(total=len(session.failed_ids), desc="Rechecking", unit="link") as bar:
                await session.recheck_failed(checker, lambda link_id, status: bar.update(1))


def print_report(session: BookmarkSession) -> None:
    counts = {kind: 0 for kind in StatusKind}
    for status in session.statuses.values():
        counts[status.kind] += 1
    print(f"Checked {session.checked} / {session.total} links")
    for kind in StatusKind:
        if counts[kind]:
            print(f"  {kind.value:<11} {counts[kind]}")
    for link in session.failed_links():
        status = session.statuses[link.id]
        print(f"  [{status.label:>7}] {link.id}: {link.name} <{link.url}>")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    config = ConfigManager(args.config)

    session = BookmarkSession()
    try:
        session.load(args.input)
    except BookmarkLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Loaded {len(session.links())} links in {count_folders(session.tree)} folders "
          f"from {args.input} ({session.source_format})")

    if args.check:
        asyncio.run(run_checks(session, config, args))
        print_report(session)
        if args.remove_failed:
            session.select(session.failed_ids)

    session.select(args.remove)
    if args.no_save:
        return 0

    try:
        path = session.save(args.output, args.format, directory=config.get_output_directory())
    except OSError as e:
        logger.error("Failed to save bookmarks: %s", e)
        print(f"Error: could not save bookmarks: {e}", file=sys.stderr)
        return 1
    print(f"Saved to {path} ({len(session.selection)} links selected for removal)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
