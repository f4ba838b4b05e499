#!/usr/bin/env python3
"""Command-line client for the /api/merge endpoint.

Examples:
    merge_client.py --doc a=report.pdf --doc b=appendix.pdf --layout "a:1-3,b:2,a:5"
    merge_client.py --doc a=one.pdf --doc b=two.pdf            # whole files, in order
"""

from __future__ import annotations

import argparse
import contextlib
import json
import os
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import requests

DEFAULT_URL = "http://localhost:8000"
LINE_WIDTH = 78


class LayoutSpecError(ValueError):
    pass


def parse_layout_spec(spec: str) -> List[Dict[str, object]]:
    """Expand ``a:1-3,b:2,a:5`` into ``[{"doc": "a", "page": 1}, ...]``.

    Ranges may run backwards (``a:5-3`` is pages 5, 4, 3).
    """
    entries: List[Dict[str, object]] = []
    for raw in spec.split(","):
        item = raw.strip()
        if not item:
            continue
        doc_id, sep, pages = item.rpartition(":")
        if not sep or not doc_id or not pages:
            raise LayoutSpecError(f"expected <doc>:<page> or <doc>:<first>-<last>, got {item!r}")
        try:
            if "-" in pages:
                first_raw, last_raw = pages.split("-", 1)
                first, last = int(first_raw), int(last_raw)
            else:
                first = last = int(pages)
        except ValueError as exc:
            raise LayoutSpecError(f"invalid page number in {item!r}") from exc
        step = 1 if last >= first else -1
        entries.extend({"doc": doc_id, "page": page} for page in range(first, last + step, step))
    if not entries:
        raise LayoutSpecError("layout is empty")
    return entries


def parse_doc_args(values: Sequence[str]) -> List[Tuple[str, Path]]:
    docs: List[Tuple[str, Path]] = []
    seen = set()
    for value in values:
        doc_id, sep, path = value.partition("=")
        if not sep or not doc_id or not path:
            raise argparse.ArgumentTypeError(f"--doc expects <id>=<path>, got {value!r}")
        if doc_id in seen:
            raise argparse.ArgumentTypeError(f"duplicate document id {doc_id!r}")
        seen.add(doc_id)
        docs.append((doc_id, Path(path).expanduser()))
    return docs


def _format_layout(entries: List[Dict[str, object]]) -> str:
    return json.dumps(entries, separators=(",", ":"))


def _print_kv(label: str, value: str) -> None:
    print(f"{label:<16}: {value}")


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:200] or response.reason
    message = body.get("error_message") or body.get("error") or response.reason
    details = body.get("details")
    return f"{body.get('error_type', 'Error')}: {message}" + (f" {details}" if details else "")


def run(
    url: str,
    docs: List[Tuple[str, Path]],
    layout: Optional[List[Dict[str, object]]],
    quality: Optional[int],
    linearize: bool,
    output: Path,
    token: Optional[str],
    timeout: float,
) -> int:
    form: Dict[str, str] = {}
    if layout is not None:
        form["layout"] = _format_layout(layout)
    if quality is not None:
        form["quality"] = str(quality)
    if linearize:
        form["linearize"] = "true"

    headers = {"Authorization": f"Bearer {token}"} if token else {}

    with contextlib.ExitStack() as stack:
        files = []
        for doc_id, path in docs:
            handle = stack.enter_context(open(path, "rb"))
            part = f"file_{doc_id}" if layout is not None else "files"
            files.append((part, (path.name, handle, "application/pdf")))

        start = time.time()
        try:
            response = requests.post(
                f"{url.rstrip('/')}/api/merge",
                data=form,
                files=files,
                headers=headers,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            print(f"Request failed: {exc}", file=sys.stderr)
            return 2
        elapsed = time.time() - start

    if response.status_code != 200:
        print(f"HTTP {response.status_code} - {_error_message(response)}", file=sys.stderr)
        return 1

    output.write_bytes(response.content)
    _print_kv("Output", str(output))
    _print_kv("Size", f"{len(response.content) / (1024 * 1024):.2f}MB")
    _print_kv("Elapsed", f"{elapsed:.2f}s")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Merge PDF pages through the merge service.")
    parser.add_argument("--url", default=os.environ.get("MERGE_URL", DEFAULT_URL), help="Service base URL")
    parser.add_argument(
        "--doc",
        action="append",
        required=True,
        metavar="ID=PATH",
        help="Document to upload; repeat for each document (order matters without --layout)",
    )
    parser.add_argument("--layout", help="Page order, e.g. 'a:1-3,b:2,a:5'; omit to merge whole files")
    parser.add_argument("--quality", type=int, help="Recompression quality 1..100")
    parser.add_argument("--linearize", action="store_true", help="Optimize the output for fast web view")
    parser.add_argument("-o", "--output", default="merged.pdf", help="Where to write the merged PDF")
    parser.add_argument("--token", default=os.environ.get("API_TOKEN"), help="Bearer token (default: $API_TOKEN)")
    parser.add_argument("--timeout", type=float, default=900.0, help="HTTP timeout in seconds")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        docs = parse_doc_args(args.doc)
        layout = parse_layout_spec(args.layout) if args.layout else None
    except (argparse.ArgumentTypeError, LayoutSpecError) as exc:
        parser.error(str(exc))

    missing = [str(path) for _, path in docs if not path.is_file()]
    if missing:
        parser.error(f"file(s) not found: {', '.join(missing)}")
    if args.quality is not None and not 1 <= args.quality <= 100:
        parser.error("--quality must be between 1 and 100")

    print("=" * LINE_WIDTH)
    print("PDF PAGE MERGE".center(LINE_WIDTH))
    print("=" * LINE_WIDTH)
    _print_kv("Service", args.url)
    _print_kv("Documents", ", ".join(f"{doc_id}={path.name}" for doc_id, path in docs))
    _print_kv("Pages", str(len(layout)) if layout is not None else "all (whole files)")

    return run(
        url=args.url,
        docs=docs,
        layout=layout,
        quality=args.quality,
        linearize=args.linearize,
        output=Path(args.output),
        token=args.token,
        timeout=args.timeout,
    )


if __name__ == "__main__":
    sys.exit(main())
