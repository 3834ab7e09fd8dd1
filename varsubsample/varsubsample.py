from multiprocessing import Pool
from pathlib import Path
from typing import Optional
import logging
import shutil

import ahocorasick
import pandas as pd

from .config import SubsampleConfig
from .tools import ToolError, Toolchain


SUCCESS = "success"
FAILED = "failed"
SKIPPED = "skipped"


class VariantDataset:

    def __init__(self, root_dir: str | Path) -> None:
        """
        A dataset root directory containing one subdirectory per variant.

        Every file in a variant subdirectory is named after the variant, e.g.
        'dataset/ba2/ba2.fasta' and 'dataset/ba2/ba2.metadata.tsv'.

        Args:
            root_dir: The root directory of the dataset.
        """
        self.root_dir = root_dir

    def __repr__(self):
        return f"VariantDataset(root_dir={self.root_dir})"

    def path(self, *args) -> Path:
        """
        Return a Path object for the given subdirectory/file in the dataset root
        directory.
        """
        return Path(self.root_dir, *args)

    def variant(self, name: str) -> "VariantData":
        return VariantData(self, name)

    def variants(self, names: list[str]) -> list["VariantData"]:
        return [self.variant(name) for name in names]


class VariantData:

    def __init__(self, dataset: VariantDataset, name: str) -> None:
        """
        The sequence and metadata files of one variant.

        Args:
            dataset: The dataset the variant belongs to.
            name: The variant name, which is also its directory name.
        """
        self.dataset = dataset
        self.name = name

    def __repr__(self):
        return f"VariantData(dataset={self.dataset}, name={self.name})"

    @property
    def directory(self) -> Path:
        return self.dataset.path(self.name)

    @property
    def sequence_paths(self) -> list[Path]:
        """
        Fasta files whose name ends with '<variant>.fasta', sorted by name.
        """
        return sorted(self.directory.glob(f"*{self.name}.fasta"))

    @property
    def metadata_paths(self) -> list[Path]:
        """
        Files ending with '.metadata.tsv', sorted by name.
        """
        return sorted(self.directory.glob("*.metadata.tsv"))

    @property
    def metadata_path(self) -> Optional[Path]:
        """
        The metadata file used for subsampling: the first of metadata_paths, or None if
        there are none.
        """
        paths = self.metadata_paths
        return paths[0] if paths else None

    @property
    def subsampled_metadata_path(self) -> Path:
        return self.directory / f"{self.name}.subsampled_metadata.tsv"

    def outputs(self) -> list["SequenceFileOutputs"]:
        return [SequenceFileOutputs(path) for path in self.sequence_paths]


class SequenceFileOutputs:

    def __init__(self, sequence_path: str | Path) -> None:
        """
        Paths of the files derived from one sequence file.

        All derived files sit next to the sequence file and are named after it with
        '.fasta' removed. For 'dataset/ba2/ba2.fasta':

            dataset/ba2/ba2.index.fasta                               (index_output)
            dataset/ba2/ba2_index/                                    (index_dir)
            dataset/ba2/ba2_index/ba2.index.fasta                     (index_path)
            dataset/ba2/ba2.subsampled_sequences.fasta                (subsampled_sequences)
            dataset/ba2/ba2.subsampled_sequences_sequences_ids.txt    (ids)

        Args:
            sequence_path: A path ending in '.fasta'.
        """
        self.sequence_path = Path(sequence_path)
        if self.sequence_path.suffix != ".fasta":
            raise ValueError(f"not a .fasta file: {sequence_path}")

        self.stem = self.sequence_path.with_suffix("")
        self.index_output = self._derived(".index.fasta")
        self.index_dir = self._derived("_index")
        self.index_path = self.index_dir / self.index_output.name
        self.subsampled_sequences = self._derived(".subsampled_sequences.fasta")
        self.ids = self._derived(".subsampled_sequences_sequences_ids.txt")

    def __repr__(self):
        return f"SequenceFileOutputs(sequence_path={self.sequence_path})"

    def _derived(self, suffix: str) -> Path:
        return self.stem.with_name(self.stem.name + suffix)


class VariantResult:

    def __init__(
        self,
        variant: str,
        status: str,
        outputs: Optional[list[SequenceFileOutputs]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        """
        The outcome of processing one variant.

        Args:
            variant: The variant name.
            status: One of 'success', 'failed' or 'skipped'.
            outputs: Derived paths of every sequence file that was processed.
            error: The exception that stopped processing if status is 'failed'.
        """
        self.variant = variant
        self.status = status
        self.outputs = outputs or []
        self.error = error

    def __repr__(self):
        return f"VariantResult(variant={self.variant}, status={self.status})"

    @property
    def exit_code(self) -> int:
        """
        0 unless the variant failed, in which case the failing tool's exit status (or 1
        for errors that are not from a tool).
        """
        if self.status != FAILED:
            return 0
        if isinstance(self.error, ToolError):
            return self.error.returncode or 1
        return 1


def relocate_index(index_output: Path, index_dir: Path) -> Path:
    """
    Move an index file into a freshly created directory.

    If index_dir already exists it is deleted along with anything in it, so that the
    directory only ever contains the latest index.

    Args:
        index_output: The index file written by the indexer.
        index_dir: The directory to move it into.

    Returns:
        The new path of the index file.
    """
    index_dir = Path(index_dir)
    if index_dir.is_dir():
        shutil.rmtree(index_dir)
    index_dir.mkdir()
    shutil.move(str(index_output), str(index_dir))
    return index_dir / Path(index_output).name


def read_ids(ids_path: str | Path) -> list[bytes]:
    """
    Read an id list, one id per line, as bytes. Blank lines are skipped.
    """
    with open(ids_path, "rb") as fobj:
        return [line.rstrip(b"\r\n") for line in fobj if line.strip()]


def extract_metadata(
    ids_path: str | Path, metadata_path: str | Path, output_path: str | Path
) -> int:
    """
    Write every line of a metadata file that contains any id from an id list.

    This is the equivalent of `grep -F -f ids_path metadata_path > output_path`. Lines
    keep their order in the metadata file and are written byte for byte, whatever
    their encoding or line endings. The header line is only written if it happens to
    contain an id.

    Matching is on the whole line, not the identifier column. An id that is a
    substring of another id, or of some other field, selects extra rows. See
    extract_metadata_exact for a column-wise match.

    Args:
        ids_path: File of ids, one per line.
        metadata_path: Tab separated metadata table.
        output_path: Where to write the matching lines.

    Returns:
        The number of lines written.
    """
    ids = read_ids(ids_path)

    # latin-1 maps every byte to exactly one character, so matches are byte-exact
    automaton = ahocorasick.Automaton()
    for isolate in set(ids):
        automaton.add_word(isolate.decode("latin-1"), len(isolate))

    n_rows = 0
    with open(metadata_path, "rb") as fin, open(output_path, "wb") as fout:
        if not ids:
            return 0
        automaton.make_automaton()
        for line in fin:
            if next(automaton.iter(line.decode("latin-1")), None) is not None:
                fout.write(line if line.endswith(b"\n") else line + b"\n")
                n_rows += 1

    return n_rows


def extract_metadata_exact(
    ids_path: str | Path,
    metadata_path: str | Path,
    output_path: str | Path,
    id_column: str = "strain",
) -> int:
    """
    Write the metadata rows whose identifier column exactly matches an id.

    Each line of the id list is a fasta header, so only its first word is used as
    the id. Rows keep their order in the metadata file and the header is written.
    Both files are read as latin-1, so bytes in any other encoding are compared and
    written back unchanged.

    Args:
        ids_path: File of ids, one per line.
        metadata_path: Tab separated metadata table.
        output_path: Where to write the matching rows.
        id_column: The metadata column holding sequence identifiers.

    Returns:
        The number of rows written, not counting the header.
    """
    ids = set(line.split()[0].decode("latin-1") for line in read_ids(ids_path))
    df = pd.read_csv(
        metadata_path, sep="\t", dtype=str, keep_default_na=False, encoding="latin-1"
    )
    if id_column not in df.columns:
        raise ValueError(f"{metadata_path} has no '{id_column}' column")

    selected = df[df[id_column].isin(ids)]
    selected.to_csv(output_path, sep="\t", index=False, encoding="latin-1")
    return len(selected)


class SubsamplePipeline:

    def __init__(
        self, config: SubsampleConfig, toolchain: Optional[Toolchain] = None
    ) -> None:
        """
        Index, subsample and extract ids and metadata for each configured variant.

        Args:
            config: Settings of the run. Should already be validated.
            toolchain: The external tools to run. Default is augur and seqkit as set in
                config.
        """
        self.config = config
        self.tools = Toolchain.from_config(config) if toolchain is None else toolchain
        self.dataset = VariantDataset(config.dataset_root)

    def __repr__(self):
        return f"SubsamplePipeline(config={self.config}, toolchain={self.tools})"

    def extract(self, ids_path: Path, metadata_path: Path, output_path: Path) -> int:
        if self.config.match == "exact":
            return extract_metadata_exact(
                ids_path, metadata_path, output_path, id_column=self.config.id_column
            )
        return extract_metadata(ids_path, metadata_path, output_path)

    def process_sequence_file(
        self, variant: VariantData, sequence_path: Path
    ) -> SequenceFileOutputs:
        """
        Run every stage of the pipeline on one sequence file.

        Args:
            variant: The variant the sequence file belongs to. Its first metadata file
                is used.
            sequence_path: The fasta file.

        Returns:
            The paths of the files that were written.
        """
        outputs = SequenceFileOutputs(sequence_path)
        metadata_path = variant.metadata_path

        logging.info(f"INDEXING: {sequence_path}")
        self.tools.indexer.index(sequence_path, outputs.index_output)
        index_path = relocate_index(outputs.index_output, outputs.index_dir)

        logging.info(f"SUBSAMPLING: {sequence_path}")
        self.tools.subsampler.subsample(
            sequences=sequence_path,
            sequence_index=index_path,
            metadata=metadata_path,
            output=outputs.subsampled_sequences,
            config=self.config,
        )

        logging.info(f"EXTRACTING SEQUENCES ID: {outputs.subsampled_sequences}")
        self.tools.id_lister.list_ids(outputs.subsampled_sequences, outputs.ids)

        logging.info(f"EXTRACTING METADATA USING SeqID: {outputs.ids}")
        n_rows = self.extract(outputs.ids, metadata_path, variant.subsampled_metadata_path)
        logging.info(f"wrote {n_rows} metadata rows to {variant.subsampled_metadata_path}")

        return outputs

    def process_variant(self, name: str) -> VariantResult:
        """
        Process every sequence file of a variant.

        Variants without sequence files or without a metadata file are skipped, leaving
        the filesystem untouched. Tool and filesystem errors propagate.
        """
        logging.info(f"Processing variant: {name}")
        variant = self.dataset.variant(name)

        sequence_paths = variant.sequence_paths
        if not sequence_paths:
            logging.warning(f"No .fasta files found for variant: {name}")
            return VariantResult(name, SKIPPED)

        if variant.metadata_path is None:
            logging.warning(f"No .metadata.tsv files found for variant: {name}")
            return VariantResult(name, SKIPPED)

        outputs = [self.process_sequence_file(variant, path) for path in sequence_paths]
        return VariantResult(name, SUCCESS, outputs=outputs)

    def try_process_variant(self, name: str) -> VariantResult:
        """
        Like process_variant, but a tool, filesystem or metadata error gives a failed
        result instead of being raised. Unreadable metadata (a missing id column, or a
        table pandas cannot parse) raises ValueError.
        """
        try:
            return self.process_variant(name)
        except (ToolError, OSError, ValueError) as err:
            logging.error(f"variant {name}: {err}")
            return VariantResult(name, FAILED, error=err)

    def run(self) -> list[VariantResult]:
        """
        Process all configured variants, in the configured order.

        Unless config.keep_going is set, the first failure stops the run and its error
        is raised. Files already written are left on disk. With keep_going, failed
        variants are reported in the returned results and the remaining variants are
        still processed.

        Returns:
            One VariantResult per variant.
        """
        results = []
        outcomes = self._results()
        try:
            for result in outcomes:
                results.append(result)
                if result.status == FAILED and not self.config.keep_going:
                    raise result.error
        finally:
            outcomes.close()
        return results

    def _results(self):
        names = self.config.variants
        if self.config.jobs == 1 or len(names) == 1:
            for name in names:
                yield self.try_process_variant(name)
        else:
            # Variants write to disjoint paths so they can run in parallel. run() closes
            # this generator on failure, which exits the with block and terminates
            # outstanding workers.
            with Pool(min(self.config.jobs, len(names))) as pool:
                yield from pool.imap(self.try_process_variant, names)
