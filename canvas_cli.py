#!/usr/bin/env python3
"""Infracanvas CLI - offline export, layout and share-link tools for canvas snapshots."""

import argparse
import json
import sys
from urllib.parse import parse_qsl, urlsplit

from canvas_core.canonical import BindingList, canonicalize
from canvas_core.codec import decode_snapshot, encode_snapshot
from canvas_core.errors import CanvasError
from canvas_core.generators import default_registry, export_diagram
from canvas_core.geometry import resolve_parents
from canvas_core.layout import ForceOptions, LayoutOptions, compute_layout
from canvas_core.logging import setup_logging
from canvas_core.models import build_snapshot, parse_snapshot
from canvas_core.validation import validate_diagram, validation_summary

DEFAULT_PARAM = "canvas"


def _json_out(data, code=0):
    print(json.dumps(data))
    sys.exit(code)


def _error(message):
    _json_out({"status": "error", "error": message}, code=1)


def _token_from(value, param):
    """Accept a bare token or a URL carrying it in a query parameter."""
    if "://" not in value and "?" not in value:
        return value
    for key, token in parse_qsl(urlsplit(value).query, keep_blank_values=True):
        if key == param:
            return token
    _error(f"No '{param}' parameter in URL")


def _load_snapshot(args):
    """Read a snapshot from --input (JSON file, '-' for stdin) or --token/--url."""
    if args.token:
        return decode_snapshot(_token_from(args.token, args.param))
    if args.input == "-":
        text = sys.stdin.read()
    else:
        try:
            with open(args.input, encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            _error(f"Cannot read {args.input}: {e.strerror}")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        _error(f"Invalid JSON in {args.input}: {e}")


def _write_output(path, content):
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


def _canonical(args, format_id="json"):
    _, shapes, bindings = parse_snapshot(_load_snapshot(args))
    return canonicalize(shapes, BindingList(bindings), format_id)


# ── Commands ─────────────────────────────────────────────────────────────────

def cmd_formats(args):
    _json_out({"status": "ok", "formats": [fmt.to_dict() for fmt in default_registry()]})


def cmd_export(args):
    registry = default_registry()
    registry.get(args.format)
    result = export_diagram(_canonical(args, args.format), args.format, registry)
    if args.output:
        _write_output(args.output, result.content)
        _json_out({"status": "ok", "format": args.format, "output": args.output})
    _json_out({"status": "ok", "format": args.format, "extension": result.extension,
               "content": result.content})


def cmd_layout(args):
    page_id, shapes, bindings = parse_snapshot(_load_snapshot(args))
    options = LayoutOptions(start_x=args.start_x, start_y=args.start_y,
                            container_padding=args.padding)
    updates = compute_layout(shapes, args.algorithm, args.direction, args.spacing, options,
                             args.iterations, ForceOptions(seed=args.seed))
    updates = {u.id: u for u in updates}

    moved = [s.model_copy(update=updates[s.id].changes()) if s.id in updates else s for s in shapes]
    parents = resolve_parents(moved)
    moved = [
        s.model_copy(update={"parent_id": parents[s.id] or page_id}) if s.id in parents else s
        for s in moved
    ]
    snapshot = build_snapshot(page_id, moved, bindings)

    if args.output:
        _write_output(args.output, json.dumps(snapshot, indent=2))
        _json_out({"status": "ok", "updated": len(updates), "output": args.output})
    _json_out({"status": "ok", "updated": len(updates), "snapshot": snapshot})


def cmd_encode(args):
    token = encode_snapshot(_load_snapshot(args))
    result = {"status": "ok", "token": token}
    if args.base_url:
        separator = "&" if "?" in args.base_url else "?"
        result["url"] = f"{args.base_url}{separator}{args.param}={token}"
    _json_out(result)


def cmd_decode(args):
    snapshot = decode_snapshot(_token_from(args.value, args.param))
    parse_snapshot(snapshot)
    if args.output:
        _write_output(args.output, json.dumps(snapshot, indent=2))
        _json_out({"status": "ok", "output": args.output})
    _json_out({"status": "ok", "snapshot": snapshot})


def cmd_validate(args):
    issues = validate_diagram(_canonical(args))
    _json_out({
        "status": "ok",
        "issues": [issue.to_dict() for issue in issues],
        "summary": validation_summary(issues),
    })


def _add_source_args(p):
    source = p.add_mutually_exclusive_group(required=True)
    source.add_argument("--input", "-i", help="Snapshot JSON file ('-' for stdin)")
    source.add_argument("--token", "-t", help="Share token or share URL")
    p.add_argument("--param", default=DEFAULT_PARAM, help="URL parameter holding the token")


def build_parser():
    parser = argparse.ArgumentParser(prog="infracanvas", description="Infracanvas snapshot tools")
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("formats", help="List export formats")

    p = sub.add_parser("export", help="Export a snapshot to a diagram format")
    p.add_argument("format")
    _add_source_args(p)
    p.add_argument("--output", "-o")

    p = sub.add_parser("layout", help="Apply an auto layout to a snapshot")
    _add_source_args(p)
    p.add_argument("--algorithm", default="hierarchical", choices=["hierarchical", "force-directed"])
    p.add_argument("--direction", default="top-down", choices=["top-down", "left-right"])
    p.add_argument("--spacing", type=float, default=100)
    p.add_argument("--start-x", type=float, default=50)
    p.add_argument("--start-y", type=float, default=50)
    p.add_argument("--padding", type=float, default=50)
    p.add_argument("--iterations", type=int, default=300)
    p.add_argument("--seed", type=int, default=0)
    p.add_argument("--output", "-o")

    p = sub.add_parser("encode", help="Encode a snapshot file into a share token")
    p.add_argument("--input", "-i", required=True)
    p.add_argument("--param", default=DEFAULT_PARAM)
    p.add_argument("--base-url")
    p.set_defaults(token=None)

    p = sub.add_parser("decode", help="Decode a share token or URL into a snapshot")
    p.add_argument("value")
    p.add_argument("--param", default=DEFAULT_PARAM)
    p.add_argument("--output", "-o")

    p = sub.add_parser("validate", help="Check a snapshot for structural issues")
    _add_source_args(p)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    cmd_map = {
        "formats": cmd_formats,
        "export": cmd_export,
        "layout": cmd_layout,
        "encode": cmd_encode,
        "decode": cmd_decode,
        "validate": cmd_validate,
    }
    try:
        cmd_map[args.command](args)
    except (CanvasError, ValueError) as e:
        _error(str(e))


if __name__ == "__main__":
    main()
