import argparse
import logging
import sys

from .config import DEFAULTS, ID_LISTERS, MATCH_MODES, SubsampleConfig
from .tools import ToolError
from .varsubsample import FAILED, SubsamplePipeline


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        "vs_subsample",
        description="Index, subsample and extract sequence ids and metadata for each "
        "variant in a dataset.",
    )
    # Every default is None so that values from --config are only overridden by flags
    # that are actually passed.
    parser.add_argument(
        "--config", help="JSON file of settings. Command line flags take precedence."
    )
    parser.add_argument(
        "--dataset-root",
        dest="dataset_root",
        help="Directory containing a subdirectory per variant. "
        f"Default='{DEFAULTS['dataset_root']}'.",
    )
    parser.add_argument(
        "--variants",
        help="Comma separated variant names, processed in this order. "
        f"Default='{','.join(DEFAULTS['variants'])}'.",
    )
    parser.add_argument(
        "--min-date",
        dest="min_date",
        help=f"Earliest collection date to keep. Default={DEFAULTS['min_date']}.",
    )
    parser.add_argument(
        "--group-by",
        dest="group_by",
        help=f"Metadata field to group by. Default='{DEFAULTS['group_by']}'.",
    )
    parser.add_argument(
        "--max-per-group",
        dest="max_per_group",
        type=int,
        help="Maximum number of sequences to keep per group. "
        f"Default={DEFAULTS['max_per_group']}.",
    )
    parser.add_argument(
        "--include-where",
        dest="include_where",
        help="Always include sequences matching this clause. "
        f"Default='{DEFAULTS['include_where']}'.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        help=f"Random seed for subsampling. Default={DEFAULTS['seed']}.",
    )
    parser.add_argument("--augur", help="augur executable. Default='augur'.")
    parser.add_argument("--seqkit", help="seqkit executable. Default='seqkit'.")
    parser.add_argument(
        "--id-lister",
        dest="id_lister",
        choices=ID_LISTERS,
        help="Extract sequence ids with seqkit or with biopython. Default='seqkit'.",
    )
    parser.add_argument(
        "--match",
        choices=MATCH_MODES,
        help="'substring' selects metadata lines containing an id anywhere (like "
        "grep -F). 'exact' selects rows whose id column equals an id. "
        "Default='substring'.",
    )
    parser.add_argument(
        "--id-column",
        dest="id_column",
        help="Metadata id column used by --match exact. Default='strain'.",
    )
    parser.add_argument(
        "--keep-going",
        dest="keep_going",
        action="store_true",
        default=None,
        help="Carry on with the remaining variants after a failure.",
    )
    parser.add_argument(
        "--jobs",
        type=int,
        help="Number of variants to process in parallel. Default=1.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log tool commands.")
    return parser


def load_config(args: argparse.Namespace) -> SubsampleConfig:
    overrides = {
        key: value
        for key, value in vars(args).items()
        if key in DEFAULTS and value is not None
    }
    if args.config is not None:
        config = SubsampleConfig.from_json(args.config, **overrides)
    else:
        config = SubsampleConfig(**overrides)
    return config.validate()


def main(argv=None, toolchain=None):
    parser = make_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        config = load_config(args)
    except (ValueError, OSError) as err:
        parser.error(str(err))

    pipeline = SubsamplePipeline(config, toolchain=toolchain)

    try:
        results = pipeline.run()
    except ToolError as err:
        logging.error(f"aborting: {err}")
        sys.exit(err.returncode or 1)
    except (OSError, ValueError) as err:
        logging.error(f"aborting: {err}")
        sys.exit(1)

    if failed := [result for result in results if result.status == FAILED]:
        for result in failed:
            logging.error(f"{result.variant} failed: {result.error}")
        sys.exit(failed[0].exit_code)

    summary = ", ".join(f"{result.variant}: {result.status}" for result in results)
    logging.info(f"done ({summary})")
