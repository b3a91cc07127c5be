import argparse
import json
import sys

from safety_tracker.db import Base, engine, get_db
from safety_tracker.errors import AppError
from safety_tracker.importer import auto_map_columns, import_csv, read_csv_file


def load_mapping(path: str | None, headers):
    if not path:
        return auto_map_columns(headers)
    with open(path, "r", encoding="utf-8") as f:
        mapping = json.load(f)
    if not isinstance(mapping, dict):
        raise SystemExit("Mapping file must contain a JSON object of field -> column header")
    return mapping


def main():
    parser = argparse.ArgumentParser(
        description="Import incidents from a CSV file into an establishment."
    )
    parser.add_argument("csv_path", help="Path to the CSV file")
    parser.add_argument(
        "--establishment",
        type=int,
        required=True,
        help="Establishment id the incidents belong to",
    )
    parser.add_argument(
        "--mapping",
        help="JSON file mapping import fields to CSV headers (default: auto-map by header name)",
    )
    parser.add_argument(
        "--location",
        type=int,
        default=None,
        help="Default location id for rows without a location column",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print JSON output",
    )

    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    headers = read_csv_file(args.csv_path)["headers"]
    mapping = load_mapping(args.mapping, headers)

    db = next(get_db())
    try:
        result = import_csv(
            db, args.csv_path, args.establishment, mapping, default_location_id=args.location
        )
    except AppError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    if args.pretty:
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        print(json.dumps(result, ensure_ascii=False))
    if result["errors"]:
        raise SystemExit(2)


if __name__ == "__main__":
    main()
