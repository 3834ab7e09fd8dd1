import argparse
import logging
import sys

import pandas as pd

from .config import SubsampleConfig
from .varsubsample import VariantData, VariantDataset

# Fields augur derives from the date column rather than reading from metadata
DATE_GROUPS = {"year", "month", "week"}


def check_variant(variant: VariantData, config: SubsampleConfig) -> list[str]:
    """
    Check that a variant directory has everything the pipeline needs.

    Args:
        variant: The variant to check.
        config: Settings of the run. The id, group-by and include-where columns must
            be present in the metadata.

    Returns:
        A description of each problem found. Empty if there are none.
    """
    if not variant.directory.is_dir():
        return [f"{variant.name}: no directory {variant.directory}"]

    problems = []
    if not variant.sequence_paths:
        problems.append(f"{variant.name}: no files matching *{variant.name}.fasta")

    metadata_path = variant.metadata_path
    if metadata_path is None:
        problems.append(f"{variant.name}: no files matching *.metadata.tsv")
        return problems

    if len(variant.metadata_paths) > 1:
        logging.warning(
            f"{variant.name}: several metadata files, only {metadata_path.name} is used"
        )

    df = pd.read_csv(
        metadata_path, sep="\t", dtype=str, keep_default_na=False, encoding="latin-1"
    )

    required = {config.id_column, "date"}
    if config.group_by not in DATE_GROUPS:
        required.add(config.group_by)
    if config.include_column is not None:
        required.add(config.include_column)
    if missing := required - set(df.columns):
        problems.append(f"{metadata_path}: missing columns {sorted(missing)}")

    if config.id_column in df.columns:
        duplicated = df[config.id_column][df[config.id_column].duplicated()]
        if len(duplicated):
            problems.append(
                f"{metadata_path}: duplicate ids {sorted(set(duplicated))}"
            )

    return problems


def main(argv=None):
    parser = argparse.ArgumentParser(
        "vs_check", description="Check a dataset has the files the pipeline needs."
    )
    parser.add_argument("--config", help="JSON file of settings.")
    parser.add_argument("--dataset-root", dest="dataset_root")
    parser.add_argument("--variants", help="Comma separated variant names.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    overrides = {"dataset_root": args.dataset_root, "variants": args.variants}
    try:
        if args.config is not None:
            config = SubsampleConfig.from_json(args.config, **overrides)
        else:
            config = SubsampleConfig(
                **{k: v for k, v in overrides.items() if v is not None}
            )
        config.validate()
    except (ValueError, OSError) as err:
        parser.error(str(err))

    dataset = VariantDataset(config.dataset_root)
    problems = []
    for variant in dataset.variants(config.variants):
        problems.extend(check_variant(variant, config))

    for problem in problems:
        logging.warning(problem)

    if problems:
        sys.exit(1)

    logging.info(f"{len(config.variants)} variant(s) ok")
