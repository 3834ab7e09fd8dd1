import argparse
import logging

from .config import MATCH_MODES
from .varsubsample import extract_metadata, extract_metadata_exact


def main(argv=None):
    parser = argparse.ArgumentParser(
        "vs_extract_metadata",
        description="Write the metadata rows of the sequences in an id list.",
    )
    parser.add_argument("ids", help="File of sequence ids, one per line.")
    parser.add_argument("metadata", help="Tab separated metadata file.")
    parser.add_argument("output", help="Where to write the selected rows.")
    parser.add_argument(
        "--match",
        choices=MATCH_MODES,
        default="substring",
        help="'substring' keeps lines containing any id (like grep -F). 'exact' keeps "
        "rows whose id column equals an id. Default='substring'.",
    )
    parser.add_argument(
        "--id-column",
        default="strain",
        help="Id column used by --match exact. Default='strain'.",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    if args.match == "exact":
        n_rows = extract_metadata_exact(
            args.ids, args.metadata, args.output, id_column=args.id_column
        )
    else:
        n_rows = extract_metadata(args.ids, args.metadata, args.output)

    logging.info(f"wrote {n_rows} rows to {args.output}")
