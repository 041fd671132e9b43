import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace

from .engine import create_engine
from .model import AddressQuery, ClickQuery, PostalQuery
from .settings import get_settings


class JsonLogFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(level=None, log_json=False):
    handler = logging.StreamHandler(sys.stdout if log_json else sys.stderr)
    if log_json:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root = logging.getLogger("parcel_discovery")
    root.handlers[:] = [handler]
    root.setLevel((level or "WARNING").upper())
    root.propagate = False


def build_parser():
    parser = argparse.ArgumentParser(
        prog="parcel-discovery",
        description="Find parcels by postal code, address or map point",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--postal", help="Postal code to search")
    target.add_argument(
        "--address",
        nargs="+",
        metavar="LINE",
        help="Street line, optionally followed by 'city, state zip'",
    )
    target.add_argument(
        "--click",
        nargs=2,
        type=float,
        metavar=("LAT", "LNG"),
        help="Resolve a map point to a property",
    )
    parser.add_argument(
        "--select",
        default=None,
        help="Identity to select and enrich after the search ('first' for the first result)",
    )
    parser.add_argument(
        "--property-type",
        default=None,
        help="Only count results of this property type in the filtered list",
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Run against the offline demo provider (no network)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, etc.)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as one JSON object per line on stdout",
    )
    return parser


def _query_from_args(args):
    if args.postal is not None:
        return PostalQuery(args.postal)
    if args.address is not None:
        line1, *rest = args.address
        return AddressQuery(line1, " ".join(rest))
    lat, lng = args.click
    return ClickQuery(lat, lng)


async def run(args):
    settings = get_settings()
    if args.demo:
        settings = replace(settings, demo=True)
    engine = create_engine(settings)
    try:
        outcome = await engine.search(_query_from_args(args))
        enrichment = None
        if args.select:
            identity = args.select
            if identity == "first":
                first = engine.results[:1] or (
                    [engine.click_record] if engine.click_record else []
                )
                identity = first[0].identity if first else None
            if identity is not None:
                report = await engine.select(identity)
                enrichment = report.to_dict() if report is not None else None
        if args.property_type:
            engine.set_filters(replace(engine.filters, property_type=args.property_type))
        selected = engine.selected
        click = engine.click_record
        return {
            "outcome": outcome.to_dict(),
            "results": [r.to_dict() for r in engine.results],
            "click_record": click.to_dict() if click is not None else None,
            "selected": selected.to_dict() if selected is not None else None,
            "enrichment": enrichment,
            "filtered_count": len(engine.filtered),
            "markers": len(engine.markers) + (1 if engine.click_marker else 0),
        }
    finally:
        await engine.aclose()


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_json)
    try:
        summary = asyncio.run(run(args))
    except KeyError as exc:
        parser.error(f"unknown property {exc.args[0]}")
    except ValueError as exc:
        parser.error(str(exc))
    print(json.dumps(summary))
    return 0 if summary["outcome"]["status"] in ("ok", "not_found", "no_address_at_point") else 1


def _safe_main():
    try:
        code = main()
    except SystemExit:
        raise
    except Exception as exc:
        print(json.dumps({"error": str(exc)}))
        raise SystemExit(1)
    raise SystemExit(code)


if __name__ == "__main__":
    _safe_main()
