from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfoNotFoundError

import jsonschema
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from .config import get_settings
from .page_ready import AjaxTimeoutError, PageLeftError, wait_for_ajaximations, wait_for_dom_ready
from .pace_contexts import CONTEXT_TYPES, build_rows, table_headers
from .relative_time import format_relative_time
from .waiting import WaitError

logger = logging.getLogger(__name__)


def pretty_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, sort_keys=True)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Course pacing browser-test helpers")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_label = sub.add_parser("last-modified", help="Render a Last Modified label")
    p_label.add_argument("--timestamp", required=True, help="ISO-8601 or en-US locale timestamp")
    p_label.add_argument("--now", help="Reference time (default: current time)")
    p_label.add_argument("--timezone", help="IANA timezone (default: PACING_TIMEZONE)")

    p_rows = sub.add_parser("pace-rows", help="Render pace context rows from a saved API response")
    p_rows.add_argument("--input", required=True, help="Path to a pace_contexts JSON payload")
    p_rows.add_argument("--type", dest="context_type", choices=CONTEXT_TYPES, default=CONTEXT_TYPES[0])
    p_rows.add_argument("--now", help="Reference time (default: current time)")
    p_rows.add_argument("--timezone", help="IANA timezone (default: PACING_TIMEZONE)")
    p_rows.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")

    p_page = sub.add_parser("check-page", help="Load a page and wait for JS, AJAX and animations to settle")
    p_page.add_argument("--url", required=True)
    p_page.add_argument("--timeout", type=float, help="Script timeout in seconds (default: PACING_SCRIPT_TIMEOUT)")

    return parser.parse_args(argv)


def _render_rows(args: argparse.Namespace) -> str:
    payload = json.loads(Path(args.input).read_text(encoding="utf-8"))
    rows = build_rows(payload, args.context_type, now=args.now, tz=args.timezone)
    if args.json:
        return pretty_json({"ok": True, "headers": table_headers(args.context_type), "rows": [r.as_dict() for r in rows]})
    lines = ["\t".join(table_headers(args.context_type))]
    lines.extend("\t".join((r.name, r.size_or_pace, r.pace_type, r.last_modified)) for r in rows)
    return "\n".join(lines)


def _check_page(url: str, timeout: Optional[float]) -> Dict[str, Any]:
    script_timeout = timeout if timeout is not None else get_settings().script_timeout
    with sync_playwright() as p:
        browser = p.chromium.launch()
        try:
            page = browser.new_page()
            page.goto(url, wait_until="domcontentloaded", timeout=int(script_timeout * 1000))
            wait_for_dom_ready(page)
            wait_for_ajaximations(page, script_timeout=script_timeout)
            return {"ok": True, "url": page.url, "title": page.title()}
        finally:
            browser.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        if args.command == "last-modified":
            print(format_relative_time(args.timestamp, now=args.now, tz=args.timezone))
            return 0
        if args.command == "pace-rows":
            print(_render_rows(args))
            return 0
        # check-page; argparse rejects any other command.
        logger.info("checking page readiness: %s", args.url)
        print(pretty_json(_check_page(args.url, args.timeout)))
        return 0
    except (
        ValueError,
        OSError,
        ZoneInfoNotFoundError,
        jsonschema.ValidationError,
        WaitError,
        PageLeftError,
        AjaxTimeoutError,
        PlaywrightError,
    ) as exc:
        logger.debug("command %s failed", args.command, exc_info=True)
        print(pretty_json({"ok": False, "error": str(exc)}))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
