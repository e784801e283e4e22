#!/usr/bin/env python3
import argparse
import os
import sys

import yaml

from auditshape.converter import Converter
from auditshape.errors import ConversionError, InvalidArguments, InvalidSequence
from auditshape.format import format_from_config
from auditshape.source import iter_events, iter_lines


DEFAULT_CONFIG = "/etc/auditshape/auditshape.yaml"
DEFAULT_AUDIT_LOG = "/var/log/audit/audit.log"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="auditshape", description="Convert raw audit logs into XML or JSON."
    )
    parser.add_argument("input", nargs="?", help="Audit log to read, '-' for stdin")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to auditshape.yaml (default: $AUSHAPE_CONFIG or %s)" % DEFAULT_CONFIG,
    )
    parser.add_argument("--lang", choices=["xml", "json"], help="Output language")
    parser.add_argument(
        "--fold",
        help="Nesting level to fold output at: a number, 'all' or 'none'",
    )
    parser.add_argument("--indent", type=int, help="Spaces per nesting level")
    parser.add_argument(
        "--events-per-doc",
        choices=["all", "none"],
        help="Put all events in one document, or each event in its own",
    )
    parser.add_argument(
        "--utc",
        action="store_const",
        const=True,
        default=None,
        help="Render timestamps in UTC instead of local time",
    )
    parser.add_argument("-o", "--output", help="Output file, '-' for stdout")
    parser.add_argument("--follow", action="store_const", const=True, default=None,
                        help="Tail the audit log")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Polling interval for follow mode (seconds)",
    )
    return parser.parse_args(argv)


def load_config(path: str | None) -> dict:
    required = path is not None
    if path is None:
        path = os.getenv("AUSHAPE_CONFIG") or DEFAULT_CONFIG
    if not os.path.exists(path):
        if required:
            raise SystemExit(f"auditshape: config file {path} not found")
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        try:
            cfg = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise SystemExit(f"auditshape: invalid config {path}: {exc}") from exc
    if not isinstance(cfg, dict):
        raise SystemExit(f"auditshape: config {path} is not a mapping")
    return cfg


def apply_overrides(cfg: dict, args: argparse.Namespace) -> dict:
    merged = dict(cfg)
    out = dict(merged.get("output") or {})
    overrides = {
        "lang": args.lang,
        "fold": args.fold,
        "indent": args.indent,
        "events_per_doc": args.events_per_doc,
        "utc": args.utc,
        "path": args.output,
    }
    for key, value in overrides.items():
        if value is not None:
            out[key] = value
    merged["output"] = out
    inp = dict(merged.get("input") or {})
    if args.input is not None:
        inp["audit_log"] = args.input
    if args.follow is not None:
        inp["follow"] = args.follow
    if args.poll_interval is not None:
        inp["poll_interval"] = args.poll_interval
    merged["input"] = inp
    return merged


def describe_error(serial: int, exc: ConversionError) -> str:
    message = f"auditshape: event {serial}: {exc}"
    if isinstance(exc, InvalidSequence) and exc.record:
        message += "\n" + "\n".join(f"    {line}" for line in exc.record.splitlines())
    return message


def convert(events, converter: Converter, writer) -> int:
    """Convert events into `writer`, flushing after each one."""

    def flush() -> None:
        writer.write(converter.getvalue())
        writer.flush()
        converter.empty()

    per_doc = converter.format.events_per_doc
    if per_doc:
        converter.add_prologue()
        flush()
    first = True
    try:
        for event in events:
            try:
                converter.add_event(event, first)
            except ConversionError as exc:
                # Drop the partially converted event.
                converter.empty()
                print(describe_error(event.serial, exc), file=sys.stderr)
                return 1
            if not per_doc:
                converter.buf.add_str("\n")
            flush()
            # Standalone documents never continue a previous one.
            first = not per_doc
    except KeyboardInterrupt:
        # Follow mode only ends on interrupt; close the document anyway.
        pass
    if per_doc:
        converter.add_epilogue()
        converter.buf.add_str("\n")
        flush()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    cfg = apply_overrides(load_config(args.config), args)
    try:
        fmt = format_from_config(cfg)
    except InvalidArguments as exc:
        print(f"auditshape: {exc}", file=sys.stderr)
        return 2

    audit_log = None if args.input is not None else os.getenv("AUSHAPE_INPUT")
    audit_log = audit_log or cfg["input"].get("audit_log") or DEFAULT_AUDIT_LOG
    output_path = None if args.output is not None else os.getenv("AUSHAPE_OUTPUT")
    output_path = output_path or cfg["output"].get("path") or "-"
    follow = bool(cfg["input"].get("follow", False))
    try:
        poll_interval = float(cfg["input"].get("poll_interval", 0.5))
    except (TypeError, ValueError):
        print("auditshape: poll_interval must be a number", file=sys.stderr)
        return 2

    converter = Converter(fmt)
    events = iter_events(iter_lines(audit_log, follow, poll_interval))
    try:
        if output_path == "-":
            return convert(events, converter, sys.stdout)
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as writer:
            return convert(events, converter, writer)
    except OSError as exc:
        print(f"auditshape: {exc}", file=sys.stderr)
        return 2
    finally:
        converter.cleanup()


if __name__ == "__main__":
    sys.exit(main())
