#!/usr/bin/env python3
import sys
import json
import logging
import argparse
from typing import List, Optional

from src.core.application.services.clean_service import db_clean
from src.core.application.services.export_service import db_export
from src.core.application.services.import_service import db_import
from src.core.domain.errors import HarvestError
from src.core.infrastructure.config.harvest_config import is_custom

EXIT_FATAL = 1
EXIT_USAGE = 3

DESCRIPTION = """\
Pull table data out of a database schema into a portable bundle, and load it back.

Harvest file (JSON):
{
  "table-group-name": "<output file name>",
  "schema": "<schema name>",
  "tables": ["<table name>"],
  "obscure": {"<table name>": {"<column>": "<pattern>"}},
  "custom_db": {"<ENV>": {"name": "", "user": "", "password": "", "host": "", "port": 5432, "sslmode": "disable"}}
}
"""

EXAMPLES = """\
examples:
  table-harvester --target-env staging --config-file sample.json --export raw
  table-harvester --target-env staging --config-file sample.json --export json --obscure
  table-harvester --target-env development --bulk-file organizations-csv.zip --import
  table-harvester --target-env custom:dev --config-file sample.json --bulk-file organizations.raw --import --clean-tables
  table-harvester --target-env custom:dev --config-file sample.json --clean-tables
"""


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="table-harvester",
        description=DESCRIPTION,
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ap.add_argument("-t", "--target-env", help="custom:{ENV}|local|development|staging|demo|production")
    ap.add_argument("-c", "--config-file", help="Harvest configuration file (schema and table names)")
    ap.add_argument("-e", "--export", dest="export_format", help="Export format: raw, csv or json")
    ap.add_argument("-i", "--import", dest="do_import", action="store_true", help="Load a bundle into the database")
    ap.add_argument("-b", "--bulk-file", help="Bundle file to import")
    ap.add_argument("--clean-tables", action="store_true", help="Erase all rows of the table(s) first")
    ap.add_argument("-o", "--obscure", action="store_true", help="Obscure columns named in the harvest file")
    ap.add_argument("--out-dir", default=".", help="Directory for exported bundles")
    ap.add_argument("-d", "--debug", action="store_true", help="Set the log level to DEBUG")
    return ap


def usage_problem(args) -> Optional[str]:
    if not args.target_env:
        return "required: --target-env"
    if not (args.export_format or args.do_import or args.clean_tables):
        return "required: one of --export, --import, --clean-tables"
    if args.export_format:
        if not args.config_file:
            return "required: --config-file for --export"
        return None
    if args.do_import:
        if not args.bulk_file:
            return "required: --bulk-file for --import"
        if is_custom(args.target_env) and not args.config_file:
            return "required: --config-file for --import into a custom environment"
        return None
    if not args.config_file:
        return "required: --config-file for --clean-tables"
    return None


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    problem = usage_problem(args)
    if problem:
        print(f"{problem}\n\n{EXAMPLES}", file=sys.stderr)
        return EXIT_USAGE

    try:
        if args.export_format:
            result = db_export(args.target_env, args.config_file, args.export_format, args.obscure, args.out_dir)
            report = {"export": result.to_dict()}
        elif args.do_import:
            result = db_import(args.target_env, args.config_file, args.bulk_file, args.clean_tables)
            report = {"import": result.to_dict()}
        else:
            result = db_clean(args.target_env, args.config_file)
            report = {"clean": result.to_dict()}
    except HarvestError as e:
        logging.getLogger(__name__).error("%s", e)
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return EXIT_FATAL

    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
