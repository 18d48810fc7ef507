"""CLI tool for crawlhook.

Usage:
    python -m crawlhook.cli serve --port 3001
    python -m crawlhook.cli analyze https://example.com
    python -m crawlhook.cli analyze https://example.com --wait-for "h1" --full-page
    python -m crawlhook.cli analyze https://example.com --css headline=h1 --css links=a
    python -m crawlhook.cli transcripts --handle @veritasium --max-videos 5
    python -m crawlhook.cli transcripts --channel-id UCHnyfMqiRRG1u-2MsSQLbXA --shorts
"""

import argparse
import asyncio
import json
import logging
import sys


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_css(pairs: list[str] | None) -> dict[str, str]:
    selectors = {}
    for pair in pairs or []:
        name, sep, selector = pair.partition("=")
        if not sep or not name or not selector:
            raise SystemExit(f"--css expects name=selector, got '{pair}'")
        selectors[name] = selector
    return selectors


def _print(body: dict, drop: tuple[str, ...] = ()) -> None:
    print(json.dumps({k: v for k, v in body.items() if k not in drop}, indent=2, ensure_ascii=False))


async def _cmd_analyze(args) -> int:
    """Analyze a single URL."""
    from crawlhook.schemas.analyze import AnalyzeRequest
    from crawlhook.services.pipeline import TaskRunner, analyze_body

    request = AnalyzeRequest(
        url=args.url,
        wait_for_selector=args.wait_for,
        timeout=args.timeout * 1000,
        full_page=args.full_page,
        selectors=_parse_css(args.css) or None,
        include_attributes=args.attributes,
    )
    result = await TaskRunner().analyze(request.to_task())
    body = analyze_body(result)
    _print(body, drop=() if args.screenshot else ("screenshot",))
    return 0 if body["success"] else 1


async def _cmd_transcripts(args) -> int:
    """Collect a channel's transcripts."""
    from crawlhook.schemas.transcripts import TranscriptsRequest
    from crawlhook.services.pipeline import TaskRunner, transcripts_body

    request = TranscriptsRequest(
        channel_handle=args.handle,
        channel_id=args.channel_id,
        max_videos=args.max_videos,
        timeout=args.timeout * 1000,
        include_shorts=args.shorts,
    )
    body = transcripts_body(await TaskRunner().transcripts(request.to_task()))
    _print(body)
    print(f"\nProcessed {body['totalProcessed']} videos", file=sys.stderr)
    return 0 if body["success"] else 1


def _cmd_serve(args) -> int:
    import uvicorn

    from crawlhook.config import settings

    uvicorn.run(
        "crawlhook.main:app",
        host=args.host or settings.HOST,
        port=args.port or settings.PORT,
        log_config=None,
    )
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="crawlhook",
        description="crawlhook CLI: analyze pages, collect transcripts, run the API server",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # --- serve ---
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: HOST setting)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: PORT setting)")

    # --- analyze ---
    analyze_parser = subparsers.add_parser("analyze", help="Analyze a single URL")
    analyze_parser.add_argument("url", help="URL to analyze")
    analyze_parser.add_argument("--wait-for", default=None, help="CSS selector to wait for")
    analyze_parser.add_argument("--timeout", type=int, default=30, help="Timeout in seconds")
    analyze_parser.add_argument("--full-page", action="store_true", help="Full-page screenshot")
    analyze_parser.add_argument("--screenshot", action="store_true", help="Include the base64 screenshot in the output")
    analyze_parser.add_argument(
        "--css", action="append", default=None, metavar="NAME=SELECTOR",
        help="Named CSS selector to extract (repeatable)",
    )
    analyze_parser.add_argument("--attributes", action="store_true", help="Include element attributes")

    # --- transcripts ---
    transcripts_parser = subparsers.add_parser("transcripts", help="Collect a YouTube channel's transcripts")
    channel = transcripts_parser.add_mutually_exclusive_group(required=True)
    channel.add_argument("--handle", default=None, help="Channel handle, e.g. @veritasium")
    channel.add_argument("--channel-id", default=None, help="Channel id, e.g. UCxxxx")
    transcripts_parser.add_argument("--max-videos", type=int, default=10, help="Videos to process")
    transcripts_parser.add_argument("--timeout", type=int, default=120, help="Timeout in seconds")
    transcripts_parser.add_argument("--shorts", action="store_true", help="Include shorts")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        sys.exit(_cmd_serve(args))

    _setup_logging(args.verbose)

    if args.command == "analyze":
        sys.exit(asyncio.run(_cmd_analyze(args)))
    elif args.command == "transcripts":
        sys.exit(asyncio.run(_cmd_transcripts(args)))


if __name__ == "__main__":
    main()
